"""
Identity API — root and context identity lifecycle.

Mutations are signed by the server's configured wallet; reads take any
owner address. Lifecycle and ledger failures propagate as PrismError and
are mapped to HTTP statuses by the application's exception handler.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, status

from prism.api.deps import get_prism_client
from prism.schemas.identity import (
    ContextIdentityOut,
    CreateContextRequest,
    EnsureRootRequest,
    IdentityOverview,
    RootIdentityOut,
    SpendRequest,
    UpdatePrivacyRequest,
)
from prism.services.prism_client import PrismClient

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/identity", tags=["Identity"])


@router.get("/{owner}", response_model=IdentityOverview)
async def get_identity(owner: str, client: PrismClient = Depends(get_prism_client)):
    root = await client.identity.fetch_root(owner)
    if root is None:
        return IdentityOverview(owner=owner, has_root=False)
    contexts = await client.identity.list_contexts(owner)
    return IdentityOverview(
        owner=owner,
        has_root=True,
        root=RootIdentityOut.from_record(root),
        contexts=[ContextIdentityOut.from_record(c) for c in contexts],
    )


@router.get("/{owner}/contexts", response_model=List[ContextIdentityOut])
async def list_contexts(owner: str, client: PrismClient = Depends(get_prism_client)):
    contexts = await client.identity.list_contexts(owner)
    return [ContextIdentityOut.from_record(c) for c in contexts]


@router.post("/root", response_model=RootIdentityOut)
async def ensure_root(req: EnsureRootRequest, client: PrismClient = Depends(get_prism_client)):
    root = await client.identity.ensure_root(req.privacy_level)
    logger.info(f"[API] Root identity {root.address} (contexts={root.context_count})")
    return RootIdentityOut.from_record(root)


@router.post("/root/privacy", response_model=RootIdentityOut)
async def update_privacy_level(req: UpdatePrivacyRequest, client: PrismClient = Depends(get_prism_client)):
    root = await client.identity.update_privacy_level(req.privacy_level)
    return RootIdentityOut.from_record(root)


@router.post("/contexts", response_model=ContextIdentityOut, status_code=status.HTTP_201_CREATED)
async def create_context(req: CreateContextRequest, client: PrismClient = Depends(get_prism_client)):
    context = await client.identity.create_context(req.context_type, req.max_per_transaction)
    logger.info(f"[API] Context #{context.context_index} created at {context.address}")
    return ContextIdentityOut.from_record(context)


@router.post("/contexts/{context_index}/revoke", response_model=ContextIdentityOut)
async def revoke_context(context_index: int, client: PrismClient = Depends(get_prism_client)):
    context = await client.identity.revoke_context(context_index)
    logger.info(f"[API] Context #{context_index} revoked")
    return ContextIdentityOut.from_record(context)


@router.post("/contexts/{context_index}/spend", response_model=ContextIdentityOut)
async def record_spending(
    context_index: int,
    req: SpendRequest,
    client: PrismClient = Depends(get_prism_client),
):
    context = await client.identity.record_spending(context_index, req.amount)
    return ContextIdentityOut.from_record(context)
