"""Location history with analytics consent and DPDP retention."""

from datetime import timedelta

import pytest
from sqlalchemy import select
from app.models import AuditLog, LocationHistory
from app.services.cleanup_service import CleanupService
from app.utils import ensure_aware, utcnow

POINT = {"latitude": 19.076, "longitude": 72.8777, "accuracy": 12.5}


async def _with_analytics_consent(client, make_user):
    user, headers = await make_user()
    response = await client.post("/consent", headers=headers, json={"purposeAnalytics": True})
    assert response.status_code == 200
    return user, headers


@pytest.mark.asyncio
async def test_record_requires_consent(client, make_user):
    _, headers = await make_user()
    response = await client.post("/location", headers=headers, json=POINT)
    assert response.status_code == 403
    body = response.json()
    assert body["error"] == "CONSENT_REQUIRED"
    assert body["message"].startswith("Location tracking requires analytics consent")


@pytest.mark.asyncio
async def test_record_requires_analytics_purpose(client, make_user):
    _, headers = await make_user()
    await client.post("/consent", headers=headers, json={"purposeMatching": True})

    response = await client.post("/location", headers=headers, json=POINT)
    assert response.status_code == 403
    assert response.json()["error"] == "CONSENT_REQUIRED"


@pytest.mark.asyncio
async def test_record_and_history(client, make_user):
    _, headers = await _with_analytics_consent(client, make_user)

    response = await client.post("/location", headers=headers, json=POINT)
    assert response.status_code == 201
    body = response.json()
    assert body["retentionDays"] == 90
    location = body["location"]
    assert location["latitude"] == 19.076
    assert location["expiresAt"]

    await client.post("/location", headers=headers, json={"latitude": 12.97, "longitude": 77.59})

    history = (await client.get("/location/history", headers=headers)).json()
    assert history["totalRecords"] == 2
    assert history["retentionDays"] == 90
    assert history["locations"][0]["latitude"] == 12.97


@pytest.mark.asyncio
async def test_retention_is_ninety_days(client, make_user, test_session):
    user, headers = await _with_analytics_consent(client, make_user)
    await client.post("/location", headers=headers, json=POINT)

    row = (await test_session.execute(
        select(LocationHistory).where(LocationHistory.user_id == user.id))).scalar_one()
    delta = ensure_aware(row.expires_at) - ensure_aware(row.created_at)
    assert delta == timedelta(days=90)


@pytest.mark.asyncio
@pytest.mark.parametrize("point", [
    {"latitude": 91, "longitude": 0},
    {"latitude": 0, "longitude": -180.5},
])
async def test_invalid_coordinates(client, make_user, point):
    _, headers = await _with_analytics_consent(client, make_user)
    response = await client.post("/location", headers=headers, json=point)
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_INPUT"


@pytest.mark.asyncio
async def test_erase_history(client, make_user, test_session):
    user, headers = await _with_analytics_consent(client, make_user)
    for _ in range(3):
        await client.post("/location", headers=headers, json=POINT)

    response = await client.delete("/location/history", headers=headers)
    assert response.status_code == 200
    assert response.json()["recordsDeleted"] == 3

    history = (await client.get("/location/history", headers=headers)).json()
    assert history["totalRecords"] == 0

    stmt = select(AuditLog).where(AuditLog.event_type == "LOCATION_DATA_DELETED")
    entry = (await test_session.execute(stmt)).scalar_one()
    assert entry.event_metadata["recordsDeleted"] == 3


@pytest.mark.asyncio
async def test_history_still_readable_after_withdrawal(client, make_user):
    """Test that reading and erasing history do not need consent."""
    _, headers = await _with_analytics_consent(client, make_user)
    await client.post("/location", headers=headers, json=POINT)
    await client.post("/consent/withdraw", headers=headers)

    history = (await client.get("/location/history", headers=headers)).json()
    assert history["totalRecords"] == 1
    response = await client.delete("/location/history", headers=headers)
    assert response.json()["recordsDeleted"] == 1


@pytest.mark.asyncio
async def test_cleanup_expires_and_purges(make_user, test_session):
    user, _ = await make_user()
    now = utcnow()
    test_session.add_all([
        LocationHistory(user_id=user.id, latitude=1, longitude=1,
                        created_at=now, expires_at=now + timedelta(days=90)),
        LocationHistory(user_id=user.id, latitude=2, longitude=2,
                        created_at=now - timedelta(days=91),
                        expires_at=now - timedelta(days=1)),
        LocationHistory(user_id=user.id, latitude=3, longitude=3,
                        created_at=now - timedelta(days=290),
                        expires_at=now - timedelta(days=200), is_expired=True),
    ])
    await test_session.commit()

    result = await CleanupService.cleanup_expired_locations()
    assert result["markedAsExpired"] == 1
    assert result["permanentlyDeleted"] == 1

    rows = (await test_session.execute(
        select(LocationHistory).order_by(LocationHistory.latitude)
        .execution_options(populate_existing=True))).scalars().all()
    assert [(r.latitude, r.is_expired) for r in rows] == [(1, False), (2, True)]
