from typing import List, Optional

from pydantic import BaseModel, Field

from prism.core.types import U64_MAX, ContextType, PrivacyLevel
from prism.infrastructure.ledger.accounts import ContextIdentity, RootIdentity


def _enum_name(enum_cls, value) -> Optional[str]:
    try:
        return enum_cls(value).name
    except ValueError:
        return None


class RootIdentityOut(BaseModel):
    address: str
    owner: str
    created_at: int
    privacy_level: int
    privacy_level_name: Optional[str] = None
    context_count: int
    nonce: int

    @classmethod
    def from_record(cls, root: RootIdentity) -> "RootIdentityOut":
        return cls(
            address=str(root.address),
            owner=str(root.owner),
            created_at=root.created_at,
            privacy_level=int(root.privacy_level),
            privacy_level_name=_enum_name(PrivacyLevel, root.privacy_level),
            context_count=root.context_count,
            nonce=root.nonce,
        )


class ContextIdentityOut(BaseModel):
    address: str
    root_identity: str
    context_index: int
    context_type: int
    context_type_name: Optional[str] = None
    created_at: int
    max_per_transaction: int
    total_spent: int
    revoked: bool
    nonce: int

    @classmethod
    def from_record(cls, ctx: ContextIdentity) -> "ContextIdentityOut":
        return cls(
            address=str(ctx.address),
            root_identity=str(ctx.root_identity),
            context_index=ctx.context_index,
            context_type=int(ctx.context_type),
            context_type_name=_enum_name(ContextType, ctx.context_type),
            created_at=ctx.created_at,
            max_per_transaction=ctx.max_per_transaction,
            total_spent=ctx.total_spent,
            revoked=ctx.revoked,
            nonce=ctx.nonce,
        )


class IdentityOverview(BaseModel):
    owner: str
    has_root: bool
    root: Optional[RootIdentityOut] = None
    contexts: List[ContextIdentityOut] = Field(default_factory=list)


class EnsureRootRequest(BaseModel):
    privacy_level: Optional[int] = Field(
        default=None,
        description="0=Maximum … 4=Public. Defaults to DEFAULT_PRIVACY_LEVEL.",
    )


class CreateContextRequest(BaseModel):
    context_type: int = Field(default=int(ContextType.DEFI), description="0=DeFi … 5=Public")
    max_per_transaction: Optional[int] = Field(
        default=None,
        ge=0,
        le=U64_MAX,
        description="Per-transaction cap in lamports. Defaults to DEFAULT_MAX_PER_TRANSACTION.",
    )


class UpdatePrivacyRequest(BaseModel):
    privacy_level: int


class SpendRequest(BaseModel):
    amount: int = Field(..., ge=0, le=U64_MAX, description="Amount in lamports.")
