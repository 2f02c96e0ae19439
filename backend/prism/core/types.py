"""Enumerations and integer bounds shared by the ledger and proof layers."""

from enum import IntEnum

U8_MAX = 2**8 - 1
U16_MAX = 2**16 - 1
U64_MAX = 2**64 - 1
I64_MAX = 2**63 - 1

LAMPORTS_PER_UNIT = 1_000_000_000


class PrivacyLevel(IntEnum):
    """Disclosure level of a root identity."""
    MAXIMUM = 0  # full anonymity
    HIGH = 1     # minimal disclosure
    MEDIUM = 2
    LOW = 3
    PUBLIC = 4


class ContextType(IntEnum):
    """Category of use for a context identity."""
    DEFI = 0          # dark pool trading, swaps
    SOCIAL = 1
    GAMING = 2
    PROFESSIONAL = 3
    TEMPORARY = 4     # burn after use
    PUBLIC = 5
