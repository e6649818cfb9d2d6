"""Short-name resolution and name-dependent attribute derivation.

Short names (sAMAccountName) are built from the normalized first and last
name using three slicing strategies, tried in order:

    index 0: first[:3] + last[:2]    johdo
    index 1: first[:2] + last[:3]    jodoe
    index 2: first[:3] + last[:3]    johdoe

The index of the winning strategy becomes the disambiguation suffix of the
common name, principal name and mail address ("" for 0, "1", "2"). The display
name never carries it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Tuple

from app.core.errors import IdentifierExhausted
from app.core.naming import NameMode, normalize

logger = logging.getLogger(__name__)

SLICES: Tuple[Tuple[int, int], ...] = ((3, 2), (2, 3), (3, 3))


@dataclass(frozen=True)
class NameVariant:
    """Which slicing strategy produced the short name, and its suffix."""

    index: int

    def __post_init__(self):
        if not 0 <= self.index < len(SLICES):
            raise ValueError(f"Variant index must be between 0 and {len(SLICES) - 1}")

    @property
    def suffix(self) -> str:
        return "" if self.index == 0 else str(self.index)


@dataclass(frozen=True)
class NameDependentFields:
    common_name: str
    principal_name: str
    email: str
    display_name: str


def candidate_names(first_name: str, last_name: str) -> List[Tuple[str, NameVariant]]:
    """Return unique short-name candidates in strategy order.

    Duplicates (possible with very short names) are dropped and do not consume
    a slot; each kept candidate remembers the strategy that produced it.
    """
    first = normalize(first_name, NameMode.IDENTIFIER)
    last = normalize(last_name, NameMode.IDENTIFIER)
    seen = set()
    candidates = []
    for index, (first_len, last_len) in enumerate(SLICES):
        candidate = first[:first_len] + last[:last_len]
        if candidate in seen:
            continue
        seen.add(candidate)
        candidates.append((candidate, NameVariant(index)))
    return candidates


def resolve(first_name: str, last_name: str, exists: Callable[[str], bool]) -> Tuple[str, NameVariant]:
    """Pick the first unused short-name candidate.

    Args:
        first_name: Raw first name
        last_name: Raw last name
        exists: Existence check against the directory (True when taken)

    Returns:
        Tuple of (short name, originating variant)

    Raises:
        IdentifierExhausted: If every unique candidate is already taken
    """
    candidates = candidate_names(first_name, last_name)
    for candidate, variant in candidates:
        if not candidate:
            continue
        if not exists(candidate):
            logger.debug("Resolved sAMAccountName | sam=%s | variant=%d", candidate, variant.index)
            return candidate, variant
        logger.debug("sAMAccountName already taken, trying next candidate | sam=%s", candidate)

    raise IdentifierExhausted(first_name, last_name, [candidate for candidate, _ in candidates])


def display_name_for(first_name: str, last_name: str) -> str:
    first = normalize(first_name, NameMode.DISPLAY)
    last = normalize(last_name, NameMode.DISPLAY)
    return f"{first} {last}".strip()


def derive_name_dependent_fields(
    variant: NameVariant,
    first_name: str,
    last_name: str,
    email_domain: str,
) -> NameDependentFields:
    """Derive every attribute that depends on the name and variant.

    Pure function: identical input always yields identical output.
    """
    display_name = display_name_for(first_name, last_name)
    common_name = f"{display_name}{variant.suffix}"
    # A part that normalizes to nothing (untransliterable script) drops its dot
    parts = [
        normalize(first_name, NameMode.IDENTIFIER_WITH_DASH),
        normalize(last_name, NameMode.IDENTIFIER_WITH_DASH),
    ]
    local_part = ".".join(part for part in parts if part) + variant.suffix
    address = f"{local_part}@{email_domain}"
    return NameDependentFields(
        common_name=common_name,
        principal_name=address,
        email=address,
        display_name=display_name,
    )


def variant_of_common_name(common_name: str, display_name: str) -> NameVariant:
    """Recover the variant embedded in an existing common name.

    ``"John Doe1"`` with display name ``"John Doe"`` is variant 1. Anything that
    does not match the display name plus a known suffix is treated as variant 0.
    """
    if common_name and display_name and common_name.startswith(display_name):
        remainder = common_name[len(display_name):]
        for index in range(1, len(SLICES)):
            if remainder == str(index):
                return NameVariant(index)
    return NameVariant(0)
