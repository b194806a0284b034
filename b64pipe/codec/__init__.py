"""
Base64 alphabets, payload validation and streaming decoding.
"""

from b64pipe.codec.alphabet import STANDARD, URLSAFE, Alphabet, get_alphabet
from b64pipe.codec.decoder import StreamingDecoder, decode, decode_stream
from b64pipe.codec.validator import CleanPayload, PayloadValidator

__all__ = [
    "Alphabet",
    "STANDARD",
    "URLSAFE",
    "get_alphabet",
    "CleanPayload",
    "PayloadValidator",
    "StreamingDecoder",
    "decode",
    "decode_stream",
]
