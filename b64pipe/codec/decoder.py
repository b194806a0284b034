"""
Streaming Base64 decoder.

Input arrives as a sequence of text chunks of any size; every complete group
of four characters is decoded through ``base64`` and returned immediately.
When a block is rejected, the alphabet's 6-bit lookup table pinpoints the
first offending character. At most three characters are carried between
chunks, so memory use does not depend on payload size.
"""

import base64
import binascii
from typing import Iterable, Iterator, Optional, Union

from b64pipe.codec.alphabet import INVALID, PADDING, STANDARD, Alphabet, get_alphabet
from b64pipe.models import AlphabetName
from b64pipe.utils.errors import InvalidCharacterError, InvalidLengthError

MAX_PENDING = 3


class StreamingDecoder:
    """
    Incremental decoder for one payload.

    Create a new instance per payload; state never crosses payloads.
    """

    def __init__(self, alphabet: Union[str, AlphabetName, Alphabet] = STANDARD) -> None:
        self.alphabet = get_alphabet(alphabet)
        self._values = self.alphabet.values
        self._carry = ""
        self._consumed = 0
        self._padded = False
        self._finished = False

    @property
    def pending(self) -> int:
        """Characters buffered while waiting for a complete group."""
        return len(self._carry)

    @property
    def consumed(self) -> int:
        """Characters accepted so far, including pending ones."""
        return self._consumed

    def feed(self, chars: str) -> bytes:
        """
        Decode as many complete groups as ``chars`` completes.

        Args:
            chars: Next piece of validated payload text

        Returns:
            Decoded bytes for the completed groups (possibly empty)

        Raises:
            InvalidCharacterError: On a non-alphabet character, misplaced
                padding or data after a padded group
        """
        if self._finished:
            raise RuntimeError("feed() called after finish()")
        if not chars:
            return b""

        base = self._consumed - len(self._carry)
        self._consumed += len(chars)

        data = self._carry + chars
        usable = len(data) - len(data) % 4
        self._carry = data[usable:]
        if not usable:
            if self._padded:
                raise InvalidCharacterError(base, data[0], "data after padding")
            return b""

        block = data[:usable]
        if self._padded:
            raise InvalidCharacterError(base, block[0], "data after padding")
        out = self._decode_block(block)
        if out is None:
            self._locate_error(block, base)
            # Fallback if binascii rejects a block the group scan accepts
            raise InvalidCharacterError(base, block[0], "not valid Base64")

        if block.endswith(self.alphabet.pad):
            self._padded = True
        if self._padded and self._carry:
            raise InvalidCharacterError(base + usable, self._carry[0], "data after padding")

        return out

    def _decode_block(self, block: str) -> Optional[bytes]:
        """Decode complete groups through binascii, or None if it rejects them."""
        altchars = self.alphabet.altchars
        if altchars is not None and ("+" in block or "/" in block):
            return None
        try:
            return base64.b64decode(block.encode("ascii"), altchars=altchars, validate=True)
        except (UnicodeEncodeError, binascii.Error):
            return None

    def _locate_error(self, block: str, base: int) -> None:
        """Raise ``InvalidCharacterError`` at the first offending character of ``block``."""
        values = self._values
        padded = False
        for i in range(0, len(block), 4):
            if padded:
                raise InvalidCharacterError(base + i, block[i], "data after padding")

            a, b, c, d = (values.get(ch, INVALID) for ch in block[i:i + 4])
            if a < 0 or b < 0:
                pos = i if a < 0 else i + 1
                raise InvalidCharacterError(base + pos, block[pos], _reason(values, block[pos]))
            if c >= 0 and d >= 0:
                continue
            if (c >= 0 and d == PADDING) or (c == PADDING and d == PADDING):
                padded = True
                continue
            pos = i + 3 if c != INVALID and d == INVALID else i + 2
            raise InvalidCharacterError(base + pos, block[pos], _reason(values, block[pos]))

    def finish(self) -> bytes:
        """
        Signal the end of the payload.

        Raises:
            InvalidLengthError: If an incomplete group is still pending
        """
        self._finished = True
        if self._carry:
            raise InvalidLengthError(self._consumed)
        return b""


def _reason(values: dict, ch: str) -> str:
    if values.get(ch, INVALID) == PADDING:
        return "misplaced padding"
    return "not in alphabet"


def decode_stream(
    chunks: Iterable[str],
    alphabet: Union[str, AlphabetName, Alphabet] = STANDARD,
) -> Iterator[bytes]:
    """
    Lazily decode a stream of validated text chunks.

    Args:
        chunks: Payload text in pieces of any size
        alphabet: Alphabet the payload uses

    Yields:
        Decoded bytes, one non-empty piece per input chunk that completed a group
    """
    decoder = StreamingDecoder(alphabet)
    for chunk in chunks:
        data = decoder.feed(chunk)
        if data:
            yield data
    tail = decoder.finish()
    if tail:
        yield tail


def decode(text: str, alphabet: Union[str, AlphabetName, Alphabet] = STANDARD) -> bytes:
    """Decode a complete, already padded payload."""
    return b"".join(decode_stream([text], alphabet))

