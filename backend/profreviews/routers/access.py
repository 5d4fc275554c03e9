from typing import Optional
from fastapi import APIRouter, Depends, Request
from ..access_context import AccessContext, get_access
from ..auth import get_optional_user, get_device_id
from ..models import User

router = APIRouter(prefix="/access", tags=["access"])

@router.get("/status")
async def access_status(
    request: Request,
    review_id: Optional[int] = None,
    current_user: Optional[User] = Depends(get_optional_user),
    access: AccessContext = Depends(get_access),
):
    """Report whether one more review could be opened, without counting a view."""
    if current_user:
        decision = access.gate.can_authed_view_another(current_user.id, review_id)
        limit = access.gate.authed_policy.limit
    else:
        decision = access.gate.can_view_another(get_device_id(request), review_id)
        limit = access.gate.anon_policy.limit

    return {
        "success": True,
        "data": {
            "authenticated": current_user is not None,
            "limit": limit,
            **decision.model_dump(),
        }
    }
