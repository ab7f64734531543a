"""
Rider OTP verification and position reporting tests.
"""
from conftest import DELIVERY_ID, RIDER_ID, FakeClock, FakeGateway, FakeTable, FakeTransport, failing, returning
from haemolink.domains.geolocation.service import Fix, PositionFeed
from haemolink.domains.rider.service import RiderPositionReporter, verify_delivery_otp


def test_otp_shape_checked_before_backend():
    """Test that a bad code or delivery id fails locally."""
    backend = FakeTransport(returning({"ok": True}))
    assert verify_delivery_otp([backend], delivery_id=DELIVERY_ID, otp="123").message == "Enter a 6-digit OTP"
    assert verify_delivery_otp([backend], delivery_id="nope", otp="123456").message == "Enter a 6-digit OTP"
    assert backend.calls == []


def test_otp_verified():
    """Test that a trimmed 6-character code is verified by the backend."""
    backend = FakeTransport(returning({"ok": True}))
    result = verify_delivery_otp([backend], delivery_id=DELIVERY_ID, otp=" 482913 ")

    assert result.ok
    assert result.message == "Delivery OTP verified. Patient can pay now."
    assert backend.calls == [("verify_delivery_otp", {"p_delivery_id": DELIVERY_ID, "p_otp": "482913"})]


def test_otp_rejected():
    """Test that a wrong code gives the generic failure."""
    backend = FakeTransport(returning({"ok": False, "message": "wrong otp"}))
    result = verify_delivery_otp([backend], delivery_id=DELIVERY_ID, otp="000000")
    assert not result.ok
    assert result.message == "OTP verification failed"


def test_otp_rest_fallback_shows_body_message():
    """Test that the raw endpoint is used on api-key errors and its rejection message is shown."""
    primary = FakeTransport(failing("No API key found in request"))
    rest = FakeTransport(returning({"ok": False, "message": "OTP expired"}), name="rest")
    result = verify_delivery_otp([primary, rest], delivery_id=DELIVERY_ID, otp="123456")

    assert result.message == "OTP expired"
    assert len(rest.calls) == 1


def test_otp_backend_error_message():
    """Test that other backend errors are reported with their message."""
    result = verify_delivery_otp([FakeTransport(failing("permission denied"))], delivery_id=DELIVERY_ID, otp="123456")
    assert result.message == "permission denied"


def test_imprecise_fix_ignored():
    """Test that fixes worse than 15 m are neither published nor stored."""
    feed = PositionFeed()
    gateway = FakeGateway()
    reporter = RiderPositionReporter(feed, clock=FakeClock())

    report = reporter.report(gateway, rider_id=RIDER_ID, delivery_id=DELIVERY_ID, fix=Fix(lat=1, lng=2, accuracy=40))

    assert not report.accepted
    assert feed.last_fix(RIDER_ID) is None
    assert gateway.tables == {}


def test_writes_throttled_per_rider(clock):
    """Test that only one backend write happens per rider every 5 seconds."""
    feed = PositionFeed()
    profiles, positions = FakeTable(), FakeTable()
    gateway = FakeGateway({"rider_profiles": profiles, "rider_positions": positions})
    reporter = RiderPositionReporter(feed, min_interval_seconds=5, clock=clock)
    fix = Fix(lat=12.97, lng=77.59, accuracy=6)

    first = reporter.report(gateway, rider_id=RIDER_ID, delivery_id=DELIVERY_ID, fix=fix)
    clock.advance(2)
    second = reporter.report(gateway, rider_id=RIDER_ID, delivery_id=DELIVERY_ID, fix=fix)
    clock.advance(3)
    third = reporter.report(gateway, rider_id=RIDER_ID, delivery_id=DELIVERY_ID, fix=fix)

    assert (first.persisted, second.persisted, third.persisted) == (True, False, True)
    assert second.accepted
    assert len(positions.ops_named("insert")) == 2
    assert positions.ops_named("insert")[0][1][0] == {
        "delivery_id": DELIVERY_ID,
        "rider_id": RIDER_ID,
        "latitude": 12.97,
        "longitude": 77.59,
        "accuracy": 6,
    }
    assert profiles.ops_named("update")[0][1][0] == {"latitude": 12.97, "longitude": 77.59}
    assert feed.last_fix(RIDER_ID) == fix


def test_write_failure_is_not_persisted(clock):
    """Test that a backend write error is reported as not persisted."""
    gateway = FakeGateway({"rider_profiles": FakeTable(error=RuntimeError("503"))})
    reporter = RiderPositionReporter(PositionFeed(), clock=clock)

    report = reporter.report(gateway, rider_id=RIDER_ID, delivery_id=DELIVERY_ID, fix=Fix(lat=1, lng=2, accuracy=3))
    assert report.accepted
    assert not report.persisted
