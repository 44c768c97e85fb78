"""
HTTP tests: auth, validation, error rendering and the rider/requester flow.
Uses pytest-asyncio + HTTPX against the ASGI app.
"""
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.main import app
from app.middleware.auth import create_access_token
from app.services.notifier import get_notifier
from tests.factories import DROPOFF, PICKUP, north_of

USER_TOKEN = create_access_token({"sub": "user-test-001"})
RIDER_TOKEN = create_access_token({"sub": "rider-user-test-001"})
STRANGER_TOKEN = create_access_token({"sub": "stranger-001"})
ADMIN_TOKEN = create_access_token({"sub": "admin-001", "role": "ADMIN"})


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


RIDE_REQUEST = {
    "vehicle_type": "BIKE",
    "pickup": PICKUP.model_dump(),
    "dropoff": DROPOFF.model_dump(),
    "notes": "Call on arrival",
}


@pytest_asyncio.fixture
async def client(db, notifier):
    app.dependency_overrides[get_notifier] = lambda: notifier
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def onboard_rider(client: AsyncClient, lat: float, lng: float) -> str:
    resp = await client.post("/v1/riders", headers=auth(RIDER_TOKEN), json={
        "name": "Chidi Okafor", "plate_number": "LAG-123-AB", "vehicle_type": "BIKE",
    })
    assert resp.status_code == 201
    rider_id = resp.json()["id"]

    resp = await client.post(f"/v1/riders/{rider_id}/approve", headers=auth(ADMIN_TOKEN))
    assert resp.json()["status"] == "APPROVED"
    await client.patch("/v1/riders/me/online", headers=auth(RIDER_TOKEN), json={"value": True})
    resp = await client.patch("/v1/riders/me/availability", headers=auth(RIDER_TOKEN), json={"value": True})
    assert resp.json()["is_available"] is True
    resp = await client.patch("/v1/location/update", headers=auth(RIDER_TOKEN), json={"lat": lat, "lng": lng})
    assert resp.status_code == 200
    return rider_id


@pytest.mark.asyncio
class TestRideAPI:
    async def test_health_check(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_create_ride_missing_auth(self, client):
        resp = await client.post("/v1/rides", json=RIDE_REQUEST)
        assert resp.status_code == 401

    async def test_expired_token(self, client):
        expired = create_access_token({"sub": "user-test-001"}, expires_minutes=-1)
        resp = await client.get("/v1/rides/active", headers=auth(expired))
        assert resp.status_code == 401

    async def test_create_ride_invalid_lat(self, client):
        body = {**RIDE_REQUEST, "pickup": {"lat": 999, "lng": 3.37}}
        resp = await client.post("/v1/rides", headers=auth(USER_TOKEN), json=body)
        assert resp.status_code == 422

    async def test_unknown_vehicle_type(self, client):
        body = {**RIDE_REQUEST, "vehicle_type": "HELICOPTER"}
        resp = await client.post("/v1/rides", headers=auth(USER_TOKEN), json=body)
        assert resp.status_code == 422

    async def test_get_nonexistent_ride(self, client):
        resp = await client.get("/v1/rides/nonexistent-uuid", headers=auth(USER_TOKEN))
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"

    async def test_create_ride_without_riders(self, client):
        resp = await client.post("/v1/rides", headers=auth(USER_TOKEN), json=RIDE_REQUEST)
        assert resp.status_code == 201
        body = resp.json()
        assert body["ride"]["status"] == "PENDING"
        assert body["ride"]["fare"]["currency"] == "NGN"
        assert body["dispatch"] is None
        assert body["nearby_riders"] == []
        assert body["message"] == "No available riders found in your area"

    async def test_one_active_ride_per_user(self, client):
        await client.post("/v1/rides", headers=auth(USER_TOKEN), json=RIDE_REQUEST)
        resp = await client.post("/v1/rides", headers=auth(USER_TOKEN), json=RIDE_REQUEST)
        assert resp.status_code == 409
        assert resp.json()["code"] == "active_ride_exists"

    async def test_route_preview(self, client):
        resp = await client.get("/v1/location/route", params={
            "start_lat": PICKUP.lat, "start_lng": PICKUP.lng,
            "end_lat": DROPOFF.lat, "end_lng": DROPOFF.lng,
        })
        assert resp.status_code == 200
        assert len(resp.json()["points"]) == 2


@pytest.mark.asyncio
class TestRiderAPI:
    async def test_profile_required(self, client):
        resp = await client.get("/v1/riders/me", headers=auth(STRANGER_TOKEN))
        assert resp.status_code == 404

    async def test_availability_requires_approval(self, client):
        await client.post("/v1/riders", headers=auth(RIDER_TOKEN), json={
            "name": "Chidi Okafor", "plate_number": "LAG-123-AB", "vehicle_type": "BIKE",
        })
        resp = await client.patch("/v1/riders/me/availability", headers=auth(RIDER_TOKEN), json={"value": True})
        assert resp.status_code == 409
        assert resp.json()["code"] == "invalid_state"

    async def test_approval_is_admin_only(self, client):
        resp = await client.post("/v1/riders", headers=auth(RIDER_TOKEN), json={
            "name": "Chidi Okafor", "plate_number": "LAG-123-AB", "vehicle_type": "BIKE",
        })
        rider_id = resp.json()["id"]
        resp = await client.post(f"/v1/riders/{rider_id}/approve", headers=auth(USER_TOKEN))
        assert resp.status_code == 403

    async def test_directory_listings_are_admin_only(self, client):
        for path in ("/v1/riders/pending", "/v1/riders/approved", "/v1/riders/search"):
            resp = await client.get(path, headers=auth(USER_TOKEN))
            assert resp.status_code == 403

    async def test_admin_browses_directory(self, client):
        resp = await client.post("/v1/riders", headers=auth(RIDER_TOKEN), json={
            "name": "Chidi Okafor", "plate_number": "LAG-123-AB", "vehicle_type": "BIKE",
        })
        rider_id = resp.json()["id"]

        resp = await client.get("/v1/riders/pending", headers=auth(ADMIN_TOKEN))
        assert [r["id"] for r in resp.json()] == [rider_id]

        resp = await client.get(
            "/v1/riders/search", headers=auth(ADMIN_TOKEN),
            params={"status": "PENDING", "vehicle_type": "BIKE", "is_online": "false"},
        )
        assert [r["id"] for r in resp.json()] == [rider_id]
        resp = await client.get("/v1/riders/search", headers=auth(ADMIN_TOKEN), params={"status": "APPROVED"})
        assert resp.json() == []
        resp = await client.get("/v1/riders/search", headers=auth(ADMIN_TOKEN), params={"status": "RETIRED"})
        assert resp.status_code == 422

        resp = await client.get(f"/v1/riders/{rider_id}", headers=auth(ADMIN_TOKEN))
        assert resp.json()["plate_number"] == "LAG-123-AB"
        resp = await client.get(f"/v1/riders/{rider_id}/stats", headers=auth(ADMIN_TOKEN))
        assert resp.json()["total_rides"] == 0
        assert resp.json()["cancellation_rate"] == 0.0
        assert float(resp.json()["average_earnings_per_ride"]) == 0.0

    async def test_unknown_rider_is_404(self, client):
        resp = await client.get("/v1/riders/no-such-rider", headers=auth(ADMIN_TOKEN))
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"


@pytest.mark.asyncio
class TestRideFlowAPI:
    async def test_request_to_completion(self, client, notifier):
        rider_id = await onboard_rider(client, *north_of(PICKUP, 1.0))

        resp = await client.post("/v1/rides", headers=auth(USER_TOKEN), json=RIDE_REQUEST)
        assert resp.status_code == 201
        body = resp.json()
        ride_id = body["ride"]["id"]
        assert body["dispatch"]["notified_count"] == 1
        assert body["dispatch"]["nearest_candidate"]["rider_id"] == rider_id
        assert body["message"] == "Notified 1 rider(s)"
        assert "ride:new-request" in notifier.events(f"rider:{rider_id}")

        resp = await client.post(f"/v1/rides/{ride_id}/accept", headers=auth(RIDER_TOKEN))
        assert resp.status_code == 200
        assert resp.json()["status"] == "ACCEPTED"
        assert resp.json()["rider_id"] == rider_id

        resp = await client.get(f"/v1/location/tracking/{ride_id}", headers=auth(USER_TOKEN))
        assert resp.json()["trackable"] is True
        assert resp.json()["target"]["label"] == "pickup"

        for step, status in (("arrived", "ARRIVED"), ("start", "IN_PROGRESS"), ("complete", "COMPLETED")):
            resp = await client.post(f"/v1/rides/{ride_id}/{step}", headers=auth(RIDER_TOKEN))
            assert resp.status_code == 200
            assert resp.json()["status"] == status

        assert resp.json()["payment_status"] == "COMPLETED"
        resp = await client.get("/v1/riders/me/stats", headers=auth(RIDER_TOKEN))
        assert resp.json()["completed_rides"] == 1
        assert resp.json()["completion_rate"] == 100.0

        resp = await client.get("/v1/rides/active", headers=auth(USER_TOKEN))
        assert resp.json() is None

    async def test_skipping_a_step_is_409(self, client):
        await onboard_rider(client, *north_of(PICKUP, 1.0))
        resp = await client.post("/v1/rides", headers=auth(USER_TOKEN), json=RIDE_REQUEST)
        ride_id = resp.json()["ride"]["id"]
        await client.post(f"/v1/rides/{ride_id}/accept", headers=auth(RIDER_TOKEN))

        resp = await client.post(f"/v1/rides/{ride_id}/complete", headers=auth(RIDER_TOKEN))
        assert resp.status_code == 409

    async def test_rider_cancels(self, client, notifier):
        rider_id = await onboard_rider(client, *north_of(PICKUP, 1.0))
        resp = await client.post("/v1/rides", headers=auth(USER_TOKEN), json=RIDE_REQUEST)
        ride_id = resp.json()["ride"]["id"]
        await client.post(f"/v1/rides/{ride_id}/accept", headers=auth(RIDER_TOKEN))

        resp = await client.post(
            f"/v1/rides/{ride_id}/cancel", headers=auth(RIDER_TOKEN), json={"reason": "Flat tyre"}
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "CANCELLED"
        assert resp.json()["cancelled_by"] == rider_id
        assert "ride:cancelled" in notifier.events("user:user-test-001")

        resp = await client.get("/v1/riders/me", headers=auth(RIDER_TOKEN))
        assert resp.json()["is_available"] is True

    async def test_stranger_cannot_cancel(self, client):
        resp = await client.post("/v1/rides", headers=auth(USER_TOKEN), json=RIDE_REQUEST)
        ride_id = resp.json()["ride"]["id"]
        resp = await client.post(f"/v1/rides/{ride_id}/cancel", headers=auth(STRANGER_TOKEN), json={})
        assert resp.status_code == 403
        assert resp.json()["code"] == "unauthorized"

    async def test_only_participants_see_a_ride(self, client):
        await onboard_rider(client, *north_of(PICKUP, 1.0))
        resp = await client.post("/v1/rides", headers=auth(USER_TOKEN), json=RIDE_REQUEST)
        ride_id = resp.json()["ride"]["id"]

        # offered but not yet assigned
        resp = await client.get(f"/v1/rides/{ride_id}", headers=auth(RIDER_TOKEN))
        assert resp.status_code == 403

        await client.post(f"/v1/rides/{ride_id}/accept", headers=auth(RIDER_TOKEN))
        for token in (USER_TOKEN, RIDER_TOKEN):
            resp = await client.get(f"/v1/rides/{ride_id}", headers=auth(token))
            assert resp.status_code == 200
            resp = await client.get(f"/v1/location/tracking/{ride_id}", headers=auth(token))
            assert resp.status_code == 200

        for method, path in (
            ("GET", f"/v1/rides/{ride_id}"),
            ("GET", f"/v1/location/tracking/{ride_id}"),
            ("POST", f"/v1/location/tracking/{ride_id}/stop"),
        ):
            resp = await client.request(method, path, headers=auth(STRANGER_TOKEN))
            assert resp.status_code == 403
            assert resp.json()["code"] == "unauthorized"

        resp = await client.post(f"/v1/location/tracking/{ride_id}/stop", headers=auth(USER_TOKEN))
        assert resp.status_code == 200

    async def test_offer_carries_requester_contact_from_token(self, client, notifier):
        rider_id = await onboard_rider(client, *north_of(PICKUP, 1.0))
        token = create_access_token({"sub": "user-test-001", "name": "Amaka Obi", "phone": "+2348012345678"})

        resp = await client.post("/v1/rides", headers=auth(token), json=RIDE_REQUEST)
        assert resp.status_code == 201
        assert resp.json()["ride"]["requester_name"] == "Amaka Obi"

        offer = notifier.payloads("ride:new-request")[0]
        assert offer["requester"] == {"id": "user-test-001", "name": "Amaka Obi", "phone": "+2348012345678"}
        assert "ride:new-request" in notifier.events(f"rider:{rider_id}")
