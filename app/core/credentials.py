"""Initial password generation."""
from __future__ import annotations

import secrets

# Visually ambiguous glyphs (I, O, l, 0, 1) are left out to ease copy-paste
UPPERCASE = "ABCDEFGHJKLMNPQRSTUVWXYZ"
LOWERCASE = "abcdefghjkmnpqrstuvwxyz"
DIGITS = "23456789"
SYMBOLS = "!@#$%*"
ALPHABET = UPPERCASE + LOWERCASE + DIGITS + SYMBOLS
AMBIGUOUS = frozenset("IOl01")

_REQUIRED_CLASSES = (UPPERCASE, LOWERCASE, DIGITS, SYMBOLS)


def generate_password(length: int = 12) -> str:
    """Generate a random password with one character from each class.

    The first four positions are filled one per class, the rest uniformly from
    the full alphabet, then the whole string is Fisher-Yates shuffled. All
    randomness comes from the ``secrets`` module.

    Args:
        length: Password length; values below 4 are raised to 4 so every class fits

    Returns:
        Generated password
    """
    length = max(length, len(_REQUIRED_CLASSES))

    chars = [secrets.choice(charset) for charset in _REQUIRED_CLASSES]
    chars.extend(secrets.choice(ALPHABET) for _ in range(length - len(chars)))

    for i in range(length - 1, 0, -1):
        j = secrets.randbelow(i + 1)
        chars[i], chars[j] = chars[j], chars[i]

    return "".join(chars)
