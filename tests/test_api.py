"""
Endpoint tests through FastAPI's TestClient with backend dependencies overridden.
"""
import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from conftest import (
    PATIENT_ID,
    REQUEST_ID,
    RIDER_ID,
    FakeGateway,
    FakeHttpSession,
    FakeResponse,
    FakeTable,
    FakeTransport,
    osrm_payload,
    returning,
    tracking_row,
)
from haemolink.core.config import settings
from haemolink.core.db import Base
from haemolink.core.deps import get_db, get_gateway, get_principal, require_patient, require_rider
from haemolink.core.security import Principal, decode_bearer_token
from haemolink.domains.geolocation.router import get_position_feed
from haemolink.domains.geolocation.service import PositionFeed
from haemolink.domains.payments.router import get_payment_initiator
from haemolink.domains.payments.service import PaymentInitiator
from haemolink.domains.rider.router import get_position_reporter
from haemolink.domains.rider.service import RiderPositionReporter
from haemolink.domains.routing.router import get_route_client
from haemolink.domains.routing.service import RouteClient
from haemolink.domains.tracking.router import get_tracking_sessions
from haemolink.domains.tracking.service import TrackingSessionRegistry
from haemolink.main import app


AUTH = {"Authorization": "Bearer test-token"}


@pytest.fixture
def backend():
    gateway = FakeGateway(
        {
            "blood_requests": FakeTable(
                [{"id": REQUEST_ID, "status": "accepted", "component": "Whole Blood", "quantity_units": 2}]
            )
        }
    )
    gateway.transport_list = [FakeTransport(returning(tracking_row()))]
    return gateway


@pytest.fixture
def client(backend):
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    def _db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    route_client = RouteClient(session=FakeHttpSession(FakeResponse(200, osrm_payload(distance_m=5000))))
    sessions = TrackingSessionRegistry(route_client_factory=lambda: route_client)
    feed = PositionFeed()
    patient = Principal(sub=PATIENT_ID, access_token="test-token", role="patient")
    rider = Principal(sub=RIDER_ID, access_token="test-token", role="rider")

    app.dependency_overrides.update(
        {
            get_db: _db,
            get_principal: lambda: patient,
            require_patient: lambda: patient,
            require_rider: lambda: rider,
            get_gateway: lambda: backend,
            get_tracking_sessions: lambda: sessions,
            get_route_client: lambda: route_client,
            get_position_feed: lambda: feed,
            get_position_reporter: lambda: RiderPositionReporter(feed),
            get_payment_initiator: lambda: PaymentInitiator([FakeTransport(returning({"ok": True, "amount": 150}))]),
        }
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    """Test that health reports the service name."""
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["service"] == settings.app_name


def test_fare(client):
    """Test the fare endpoint."""
    assert client.get("/fare", params={"distance_km": 10}).json() == {"distance_km": 10.0, "fare_inr": 210}


def test_routes(client):
    """Test that a route comes back with its fare and invalid coordinates are rejected."""
    r = client.get("/routes", params={"pickup_lat": 12.97, "pickup_lng": 77.59, "drop_lat": 12.99, "drop_lng": 77.61})
    assert r.status_code == 200
    assert r.json()["fare_inr"] == 120
    assert r.json()["coords_lat_lng"][0] == [12.97, 77.59]

    bad = client.get("/routes", params={"pickup_lat": 100, "pickup_lng": 77.59, "drop_lat": 12.99, "drop_lng": 77.61})
    assert bad.status_code == 422


def test_route_unavailable(client):
    """Test that no route is a 404."""
    app.dependency_overrides[get_route_client] = lambda: RouteClient(session=FakeHttpSession(FakeResponse(200, {"routes": []})))
    r = client.get("/routes", params={"pickup_lat": 1, "pickup_lng": 2, "drop_lat": 3, "drop_lng": 4})
    assert r.status_code == 404
    assert r.json()["detail"] == "Route unavailable"


def test_tracking_rejects_non_uuid_without_backend_call(client, backend):
    """Test that a malformed request id is a 422 and nothing is polled."""
    r = client.get("/tracking/not-a-uuid", headers=AUTH)
    assert r.status_code == 422
    assert backend.transport_list[0].calls == []
    assert backend.tables["blood_requests"].executed == []


def test_tracking_view(client):
    """Test that the tracking view combines request, snapshot, route and map."""
    r = client.get(f"/tracking/{REQUEST_ID}", headers=AUTH)
    assert r.status_code == 200
    body = r.json()
    assert body["request"]["units_required"] == 2
    assert body["can_pay"] is True
    assert body["fare_inr"] == 150
    assert body["route"]["distance_km"] == 5.0
    assert body["map"]["polyline_source"] == "route"
    assert body["generation"] == 1
    assert len(body["directions"]) == 3


def test_active_tracking_without_requests(client, backend):
    """Test that a patient with no requests gets the placeholder view."""
    backend.tables["blood_requests"].data = []
    r = client.get("/tracking/active", headers=AUTH)
    assert r.status_code == 200
    assert r.json()["request"] is None
    assert r.json()["map"]["available"] is False


def test_active_tracking_uses_newest_request(client):
    """Test that the newest request is tracked."""
    r = client.get("/tracking/active", headers=AUTH)
    assert r.json()["request"]["id"] == REQUEST_ID
    assert r.json()["tracking"]["otp"] == "123456"


def test_map_geojson(client):
    """Test the GeoJSON map export."""
    r = client.get(f"/tracking/{REQUEST_ID}/map.geojson", headers=AUTH)
    assert r.status_code == 200
    assert r.json()["type"] == "FeatureCollection"
    assert client.get(f"/tracking/{REQUEST_ID}/map", headers=AUTH).json()["color"] == "#2563eb"


def test_pay_cash(client):
    """Test that paying marks the tracked delivery as paid."""
    client.get(f"/tracking/{REQUEST_ID}", headers=AUTH)
    r = client.post(f"/tracking/{REQUEST_ID}/payments", json={"method": "cash"}, headers=AUTH)
    assert r.status_code == 200
    assert r.json() == {"ok": True, "message": "Payment recorded: ₹150", "amount": 150.0, "payment_status": "paid"}

    bad = client.post(f"/tracking/{REQUEST_ID}/payments", json={"method": "card"}, headers=AUTH)
    assert bad.status_code == 422


def test_upi_link_uses_stored_preferences(client):
    """Test that saved UPI details prefill the deep link."""
    saved = client.put("/patients/me/upi-preferences", json={"vpa": "haemolink@okaxis", "payee_name": "City Bank"}, headers=AUTH)
    assert saved.json() == {"vpa": "haemolink@okaxis", "payee_name": "City Bank"}

    r = client.get(f"/tracking/{REQUEST_ID}/upi", headers=AUTH)
    body = r.json()
    assert body["valid_vpa"] is True
    assert body["amount"] == 150
    assert body["uri"].startswith("upi://pay?pa=haemolink%40okaxis&pn=City+Bank&am=150")
    assert body["qr_image_url"].startswith("https://api.qrserver.com/v1/create-qr-code/?size=220x220")

    invalid = client.get(f"/tracking/{REQUEST_ID}/upi", params={"vpa": "nope"}, headers=AUTH).json()
    assert invalid["valid_vpa"] is False
    assert invalid["uri"] is None


def test_push_position(client):
    """Test that a device fix is accepted into the feed."""
    r = client.post("/positions", json={"lat": 12.97, "lng": 77.59, "accuracy": 4}, headers=AUTH)
    assert r.json() == {"ok": True, "watchers": 0}
    assert client.post("/positions", json={"lat": 91, "lng": 0}, headers=AUTH).status_code == 422


def test_rider_position_and_otp(client, backend):
    """Test the rider endpoints."""
    r = client.post(f"/riders/deliveries/{REQUEST_ID}/positions", json={"lat": 12.97, "lng": 77.59, "accuracy": 5}, headers=AUTH)
    assert r.json()["accepted"] is True
    assert r.json()["persisted"] is True

    backend.transport_list = [FakeTransport(returning({"ok": True}))]
    otp = client.post(f"/riders/deliveries/{REQUEST_ID}/otp/verify", json={"otp": "123456"}, headers=AUTH)
    assert otp.json() == {"ok": True, "message": "Delivery OTP verified. Patient can pay now."}


def test_missing_bearer_is_401():
    """Test that protected endpoints need a bearer token."""
    r = TestClient(app).get("/tracking/active")
    assert r.status_code == 401
    assert r.json()["detail"] == "Missing bearer token"


def test_invalid_token_is_401():
    """Test that an unverifiable token is rejected."""
    r = TestClient(app).get("/patients/requests", headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid token"


def test_decode_supabase_token():
    """Test that a Supabase-style access token decodes to its subject."""
    token = jwt.encode(
        {"sub": PATIENT_ID, "aud": settings.supabase_jwt_audience, "email": "p@example.com"},
        settings.supabase_jwt_secret,
        algorithm="HS256",
    )
    principal = decode_bearer_token(token)
    assert principal.sub == PATIENT_ID
    assert principal.email == "p@example.com"
    assert principal.access_token == token
