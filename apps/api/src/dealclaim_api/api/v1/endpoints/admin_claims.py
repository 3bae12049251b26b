"""Administrative overrides for individual claims."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from dealclaim_api.api.dependencies.security import require_admin_api_key
from dealclaim_api.api.dependencies.session import require_admin_session
from dealclaim_api.api.errors import to_http_exception
from dealclaim_api.db.session import get_session
from dealclaim_api.models.user import User
from dealclaim_api.observability.claims import get_claim_observability_store
from dealclaim_api.schemas.claims import ClaimResponse, MessageResponse
from dealclaim_api.services.claims import AdminClaimCommand, AdminOverrideController, ClaimError


router = APIRouter(
    prefix="/admin/claims",
    tags=["admin"],
    dependencies=[Depends(require_admin_api_key)],
)


class AdminClaimActionResponse(BaseModel):
    success: bool = True
    action: str
    message: str
    claim: ClaimResponse


@router.put("/{claim_id}", response_model=AdminClaimActionResponse)
async def apply_claim_action(
    claim_id: UUID,
    command: AdminClaimCommand = Body(...),
    admin: User = Depends(require_admin_session),
    db: AsyncSession = Depends(get_session),
) -> AdminClaimActionResponse:
    """Apply one of cancel, redeem, extend, confirm_deposit, generate_codes or edit."""

    actor_id = admin.id
    try:
        result = await AdminOverrideController(db).apply(claim_id, command, actor_id=actor_id)
    except ClaimError as error:
        raise to_http_exception(error) from error

    get_claim_observability_store().record_admin_action(result.action.value)
    return AdminClaimActionResponse(
        action=result.action.value,
        message=result.message,
        claim=ClaimResponse.from_claim(result.claim),
    )


@router.delete("/{claim_id}", response_model=MessageResponse)
async def delete_claim(
    claim_id: UUID,
    admin: User = Depends(require_admin_session),
    db: AsyncSession = Depends(get_session),
) -> MessageResponse:
    try:
        released = await AdminOverrideController(db).hard_delete(claim_id)
    except ClaimError as error:
        raise to_http_exception(error) from error

    get_claim_observability_store().record_admin_action("delete")
    message = "Claim deleted; slot released" if released else "Claim deleted"
    return MessageResponse(message=message)
