from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from ..config import settings
from ..database import get_db
from ..dependencies import require_consent
from ..models import User
from ..schemas import LocationCreate, LocationHistoryResponse, LocationResponse
from ..services.consent_service import ConsentPurpose
from ..services.jwt_service import JWTService
from ..services.location_service import LOCATION_CONSENT_MESSAGE, LocationService

router = APIRouter(
    prefix="/location",
    tags=["location"],
    responses={403: {"description": "Analytics consent required"}},
)


@router.post("", status_code=status.HTTP_201_CREATED)
async def record_location(
    payload: LocationCreate,
    current_user: User = Depends(
        require_consent(ConsentPurpose.ANALYTICS, LOCATION_CONSENT_MESSAGE)),
    db: AsyncSession = Depends(get_db),
):
    """
    Record a location point.

    Requires `purposeAnalytics` consent. Points expire after 90 days and
    are purged by the daily cleanup job.
    """
    location = await LocationService.record(
        db, current_user.id, payload.latitude, payload.longitude, payload.accuracy)
    days = settings.location_retention_days
    return {
        "message": "Location recorded",
        "location": LocationResponse.model_validate(location).model_dump(by_alias=True, mode="json"),
        "retentionDays": days,
        "dpdpNotice": {
            "retention": f"Location data will be automatically deleted after {days} days as per DPDP Act 2023.",
            "rights": "You can request immediate deletion of your location data.",
        },
    }


@router.get("/history", response_model=LocationHistoryResponse)
async def location_history(
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Live (unexpired, not erased) points, newest first, at most 100."""
    locations = await LocationService.history(db, current_user.id)
    return LocationHistoryResponse(
        locations=[LocationResponse.model_validate(loc) for loc in locations],
        total_records=len(locations),
        retention_days=settings.location_retention_days,
    )


@router.delete("/history")
async def delete_location_history(
    request: Request,
    current_user: User = Depends(JWTService.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Right to erasure: hides every point immediately."""
    count = await LocationService.erase(db, current_user.id, request)
    return {
        "message": "Location history deleted successfully",
        "recordsDeleted": count,
        "dpdpNotice": {
            "notice": "Your location data has been deleted as per your right to erasure under DPDP Act 2023.",
            "grievanceOfficer": "Contact grievance.officer@bandhan.ai for queries.",
        },
    }
