"""
Field-level input validation.

All checks run synchronously before any I/O and raise PrismValidationError
with the offending field and value. ``bool`` is rejected wherever an integer
is expected, since ``True`` would otherwise pass as ``1``.
"""

from typing import Any, Union

from solders.pubkey import Pubkey

from prism.core.errors import PrismValidationError
from prism.core.types import U16_MAX, U64_MAX, ContextType, PrivacyLevel


def _require_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise PrismValidationError(
            f"{field} must be an integer",
            "INVALID_TYPE",
            field=field,
            value=type(value).__name__,
        )
    return value


def validate_amount(value: Any, field: str = "amount") -> int:
    """Unsigned 64-bit amount in the ledger's native unit."""
    amount = _require_int(value, field)
    if amount < 0:
        raise PrismValidationError(
            f"{field} cannot be negative", "NEGATIVE_AMOUNT", field=field, value=amount,
        )
    if amount > U64_MAX:
        raise PrismValidationError(
            f"{field} exceeds maximum value", "AMOUNT_TOO_LARGE", field=field, value=amount,
        )
    return amount


def validate_context_type(value: Any) -> ContextType:
    raw = _require_int(value, "context_type")
    try:
        return ContextType(raw)
    except ValueError:
        valid = [t.value for t in ContextType]
        raise PrismValidationError(
            f"Invalid context type: {raw}. Valid types: {valid}",
            "INVALID_CONTEXT_TYPE",
            field="context_type",
            value=raw,
            context={"valid_types": valid},
        ) from None


def validate_privacy_level(value: Any) -> PrivacyLevel:
    raw = _require_int(value, "privacy_level")
    try:
        return PrivacyLevel(raw)
    except ValueError:
        valid = [lvl.value for lvl in PrivacyLevel]
        raise PrismValidationError(
            f"Invalid privacy level: {raw}. Valid levels: {valid}",
            "INVALID_PRIVACY_LEVEL",
            field="privacy_level",
            value=raw,
            context={"valid_levels": valid},
        ) from None


def validate_context_index(value: Any) -> int:
    index = _require_int(value, "context_index")
    if index < 0:
        raise PrismValidationError(
            "Context index cannot be negative",
            "NEGATIVE_CONTEXT_INDEX",
            field="context_index",
            value=index,
        )
    if index > U16_MAX:
        raise PrismValidationError(
            f"Context index exceeds maximum value ({U16_MAX})",
            "CONTEXT_INDEX_TOO_LARGE",
            field="context_index",
            value=index,
        )
    return index


def validate_pubkey(value: Union[str, Pubkey], field: str = "pubkey") -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    if not isinstance(value, str):
        raise PrismValidationError(
            "Public key must be a string or Pubkey",
            "INVALID_PUBKEY_TYPE",
            field=field,
            value=type(value).__name__,
        )
    try:
        return Pubkey.from_string(value)
    except ValueError:
        raise PrismValidationError(
            f"Invalid public key format: {value}",
            "INVALID_PUBKEY_FORMAT",
            field=field,
            value=value,
        ) from None
