"""
Base64 alphabets and their 6-bit decode tables.
"""

import string
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

from b64pipe.models import AlphabetName

PAD = "="

# Stripped by the validator before any other check
WHITESPACE = " \t\r\n\v\f"

# Lookup results for characters that are not symbols
INVALID = -1
PADDING = -2


@dataclass(frozen=True)
class Alphabet:
    """A 64-symbol Base64 alphabet plus the ``=`` pad character."""

    name: AlphabetName
    symbols: str
    pad: str = PAD
    values: Dict[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if len(self.symbols) != 64 or len(set(self.symbols)) != 64:
            raise ValueError(f"Alphabet {self.name.value} must have 64 distinct symbols")
        table = {ch: value for value, ch in enumerate(self.symbols)}
        table[self.pad] = PADDING
        object.__setattr__(self, "values", table)

    def value_of(self, ch: str) -> int:
        """Return the 6-bit value of ``ch``, ``PADDING`` for ``=`` or ``INVALID``."""
        return self.values.get(ch, INVALID)

    def is_symbol(self, ch: str) -> bool:
        return self.values.get(ch, INVALID) >= 0

    @property
    def altchars(self) -> Optional[bytes]:
        """The two non-alphanumeric symbols for ``base64.b64decode``, or None for standard."""
        extra = self.symbols[62:]
        return None if extra == "+/" else extra.encode("ascii")

    @property
    def symbol_class(self) -> str:
        """Regex character class body matching the 64 symbols."""
        return "A-Za-z0-9" + "".join("\\" + ch for ch in self.symbols[62:])


STANDARD = Alphabet(
    AlphabetName.STANDARD,
    string.ascii_uppercase + string.ascii_lowercase + string.digits + "+/",
)

URLSAFE = Alphabet(
    AlphabetName.URLSAFE,
    string.ascii_uppercase + string.ascii_lowercase + string.digits + "-_",
)

_ALPHABETS = {
    AlphabetName.STANDARD: STANDARD,
    AlphabetName.URLSAFE: URLSAFE,
}


def get_alphabet(name: Union[str, AlphabetName, Alphabet]) -> Alphabet:
    """
    Resolve an alphabet by name.

    Args:
        name: ``"standard"``, ``"urlsafe"``, an ``AlphabetName`` or an ``Alphabet``

    Returns:
        The matching alphabet

    Raises:
        ValueError: If the name is unknown
    """
    if isinstance(name, Alphabet):
        return name
    try:
        return _ALPHABETS[AlphabetName(name)]
    except ValueError:
        supported = ", ".join(a.value for a in AlphabetName)
        raise ValueError(f"Unknown alphabet '{name}'. Supported alphabets: {supported}")
