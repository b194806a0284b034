"""
Payload validation and padding normalization.

The validator strips whitespace, rejects characters outside the configured
alphabet, checks the placement of ``=`` padding and, in repair mode, pads a
short final group up to a multiple of four characters. The same rules run
eagerly over a materialized payload (``validate``) or lazily over a chunk
stream (``iter_clean``), so whole-file payloads never need to be held in
memory.
"""

import re
from typing import Iterable, Iterator, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from b64pipe.codec.alphabet import PAD, STANDARD, WHITESPACE, Alphabet, get_alphabet
from b64pipe.models import AlphabetName
from b64pipe.utils.errors import InvalidCharacterError, InvalidLengthError
from b64pipe.utils.logging import get_logger

logger = get_logger(__name__)

_WHITESPACE_RE = re.compile(f"[{re.escape(WHITESPACE)}]+")


class CleanPayload(BaseModel):
    """Validated payload text whose length is a multiple of four."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(..., description="Symbols followed by 0-2 '=' characters")
    alphabet: AlphabetName = Field(AlphabetName.STANDARD, description="Alphabet the text uses")
    padding: int = Field(0, ge=0, le=2, description="Number of trailing '='")
    repaired: bool = Field(False, description="Whether padding was added by repair mode")

    @model_validator(mode="after")
    def check_invariants(self) -> "CleanPayload":
        """Length is a multiple of four and every symbol is in the alphabet."""
        if len(self.text) % 4:
            raise ValueError(f"CleanPayload length {len(self.text)} is not a multiple of 4")
        body = self.text[:len(self.text) - self.padding]
        if self.text[len(body):] != PAD * self.padding:
            raise ValueError("CleanPayload padding count does not match its text")
        symbols = get_alphabet(self.alphabet)
        if not all(symbols.is_symbol(ch) for ch in body):
            raise ValueError(f"CleanPayload contains characters outside {self.alphabet.value}")
        return self

    @property
    def decoded_length(self) -> int:
        """Exact number of bytes the payload decodes to."""
        return 3 * len(self.text) // 4 - self.padding

    def iter_chunks(self, chunk_size: int) -> Iterator[str]:
        for pos in range(0, len(self.text), chunk_size):
            yield self.text[pos:pos + chunk_size]


class _ScanState:
    """Counters carried across chunks of one payload."""

    __slots__ = ("offset", "symbols", "padding", "padding_start")

    def __init__(self) -> None:
        self.offset = 0
        self.symbols = 0
        self.padding = 0
        self.padding_start: Optional[int] = None


class PayloadValidator:
    """
    Validate and normalize candidate Base64 payloads.

    Rules:
    1. Whitespace is always stripped
    2. Any other non-alphabet character fails at its offset
    3. At most two trailing '=' and only where the final group allows them
    4. A length that is not a multiple of four fails unless repair mode
       pads it; a final group of a single symbol is never repairable
    """

    def __init__(
        self,
        alphabet: Union[str, AlphabetName, Alphabet] = STANDARD,
        repair_padding: bool = False,
    ) -> None:
        """
        Initialize the validator.

        Args:
            alphabet: Alphabet the payload must use
            repair_padding: Pad short final groups with '=' instead of failing
        """
        self.alphabet = get_alphabet(alphabet)
        self.repair_padding = repair_padding
        self._invalid_re = re.compile(
            f"[^{self.alphabet.symbol_class}{re.escape(WHITESPACE)}]"
        )

    def validate(self, raw: str) -> CleanPayload:
        """
        Validate a materialized payload.

        Args:
            raw: Payload text as extracted from the source

        Returns:
            CleanPayload with normalized padding

        Raises:
            InvalidCharacterError: For the first character that is not allowed
            InvalidLengthError: If the length cannot be made a multiple of 4
        """
        state = _ScanState()
        parts = list(self._scan(raw, state))
        tail = self._finish(state)
        text = "".join(parts) + tail

        return CleanPayload(
            text=text,
            alphabet=self.alphabet.name,
            padding=state.padding + len(tail),
            repaired=bool(tail),
        )

    def iter_clean(self, chunks: Iterable[str]) -> Iterator[str]:
        """
        Validate a payload lazily, yielding cleaned text chunk by chunk.

        Errors surface when the offending chunk is reached, so callers that
        write as they go must discard partial output on failure.
        """
        state = _ScanState()
        for chunk in chunks:
            cleaned = self._scan(chunk, state)
            if cleaned:
                yield cleaned
        tail = self._finish(state)
        if tail:
            yield tail

    def _scan(self, chunk: str, state: _ScanState) -> str:
        """Check one chunk and return it with whitespace removed."""
        if state.padding == 0 and PAD not in chunk and not self._invalid_re.search(chunk):
            cleaned = _WHITESPACE_RE.sub("", chunk)
            state.symbols += len(cleaned)
            state.offset += len(chunk)
            return cleaned

        kept = []
        for ch in chunk:
            if ch in WHITESPACE:
                state.offset += 1
                continue

            if ch == PAD:
                allowed = (4 - state.symbols % 4) % 4
                if state.symbols % 4 < 2:
                    raise InvalidCharacterError(
                        state.offset, ch, "padding cannot start a group's first two positions"
                    )
                if state.padding >= allowed:
                    raise InvalidCharacterError(state.offset, ch, "too much padding")
                if state.padding == 0:
                    state.padding_start = state.offset
                state.padding += 1
            elif self.alphabet.is_symbol(ch):
                if state.padding:
                    raise InvalidCharacterError(
                        state.padding_start, PAD, "padding before the end of the payload"
                    )
                state.symbols += 1
            else:
                raise InvalidCharacterError(state.offset, ch)

            kept.append(ch)
            state.offset += 1

        return "".join(kept)

    def _finish(self, state: _ScanState) -> str:
        """Check the final length and return any repair padding."""
        total = state.symbols + state.padding
        if total % 4 == 0:
            return ""

        repairable = state.symbols % 4 != 1
        if not self.repair_padding or not repairable:
            raise InvalidLengthError(total, repairable=repairable)

        tail = PAD * (4 - total % 4)
        logger.debug(f"Repaired payload padding with {len(tail)} '=' characters")
        return tail
