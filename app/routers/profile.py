from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from ..database import get_db
from ..dependencies import optional_age_gate, require_adult
from ..exceptions import ApiError, ErrorCode
from ..models import User
from ..schemas import ProfileUpdate, UserResponse
from ..services.audit_service import AuditEvent, AuditService
from ..services.verification import VerificationService

router = APIRouter(
    prefix="/profile",
    tags=["profile"],
    responses={403: {"description": "Age verification required"}},
)


@router.get("")
async def get_profile(
    current_user: User = Depends(require_adult),
    age_status: dict = Depends(optional_age_gate),
):
    """
    Own profile. Adults only.
    """
    return {
        "user": UserResponse.model_validate(current_user).model_dump(by_alias=True, mode="json"),
        "verification": VerificationService.summary(current_user),
        "ageStatus": age_status,
    }


@router.get("/age-status")
async def get_age_status(age_status: dict = Depends(optional_age_gate)):
    """
    Age verification status for the caller. Never blocks; anonymous callers
    get the unverified default so clients can decide which prompt to show.
    """
    return {"ageStatus": age_status}


@router.patch("")
async def update_profile(
    payload: ProfileUpdate,
    request: Request,
    current_user: User = Depends(require_adult),
    db: AsyncSession = Depends(get_db),
):
    """
    Update name and bio. Adults only; nothing is written when the age gate
    rejects the request.
    """
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ApiError(ErrorCode.INVALID_INPUT, "No profile fields provided.")

    for field, value in changes.items():
        setattr(current_user, field, value)
    AuditService.record(
        db, AuditEvent.PROFILE_UPDATED,
        user_id=current_user.id, entity_type="user", entity_id=current_user.id,
        action="update", metadata={"fields": sorted(changes)},
        request=request,
    )
    await db.commit()
    await db.refresh(current_user)
    return {
        "message": "Profile updated successfully",
        "user": UserResponse.model_validate(current_user).model_dump(by_alias=True, mode="json"),
    }
