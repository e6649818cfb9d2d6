"""Name normalization for identifiers and display names.

Raw names arrive in whatever script HR typed them in. Before they can be used
in a login name, a mail local-part or a directory common name they go through
three steps:

1. Transliterate characters from the substitution table (Cyrillic plus a few
   Latin letters that do not decompose, such as ``ß`` or ``ø``).
2. Unicode-decompose (NFD) and drop combining marks, so ``é`` becomes ``e``.
3. Filter by mode:

   - ``IDENTIFIER``: lowercase, ASCII letters and digits only.
   - ``IDENTIFIER_WITH_DASH``: same, keeping ``-``.
   - ``DISPLAY``: original casing, ASCII letters, digits, space and ``-``.
"""
from __future__ import annotations

import enum
import unicodedata


class NameMode(str, enum.Enum):
    IDENTIFIER = "identifier"
    IDENTIFIER_WITH_DASH = "identifier-with-dash"
    DISPLAY = "display"


TRANSLITERATION = {
    # Cyrillic (Russian / Ukrainian / Belarusian)
    "а": "a", "б": "b", "в": "v", "г": "g", "д": "d", "е": "e", "ё": "e",
    "ж": "zh", "з": "z", "и": "i", "й": "y", "к": "k", "л": "l", "м": "m",
    "н": "n", "о": "o", "п": "p", "р": "r", "с": "s", "т": "t", "у": "u",
    "ф": "f", "х": "kh", "ц": "ts", "ч": "ch", "ш": "sh", "щ": "shch",
    "ъ": "", "ы": "y", "ь": "", "э": "e", "ю": "yu", "я": "ya",
    "є": "ye", "і": "i", "ї": "yi", "ґ": "g", "ў": "u",
    # Latin letters without a canonical decomposition
    "ß": "ss", "æ": "ae", "œ": "oe", "ø": "o", "ł": "l", "đ": "d",
    "ð": "d", "þ": "th", "ı": "i",
}

_ASCII_LETTERS_DIGITS = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789")


def transliterate(raw: str) -> str:
    """Replace table characters, keeping the source letter's case."""
    out = []
    for char in raw:
        replacement = TRANSLITERATION.get(char.lower())
        if replacement is None:
            out.append(char)
        elif char.isupper() and replacement:
            out.append(replacement[0].upper() + replacement[1:])
        else:
            out.append(replacement)
    return "".join(out)


def strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def normalize(raw: str, mode: NameMode = NameMode.IDENTIFIER) -> str:
    """Sanitize a raw human name for the given mode.

    Args:
        raw: Name as supplied by the caller
        mode: Target form (identifier, identifier-with-dash or display)

    Returns:
        Sanitized name; may be empty if nothing survives the filter
    """
    mode = NameMode(mode)
    cleaned = strip_diacritics(transliterate(raw or ""))

    if mode is NameMode.DISPLAY:
        allowed = _ASCII_LETTERS_DIGITS | {" ", "-"}
        return "".join(char for char in cleaned if char in allowed).strip()

    allowed = _ASCII_LETTERS_DIGITS
    if mode is NameMode.IDENTIFIER_WITH_DASH:
        allowed = allowed | {"-"}
    return "".join(char for char in cleaned.lower() if char in allowed)
