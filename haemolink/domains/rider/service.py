import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from haemolink.core.config import settings
from haemolink.core.security import is_uuid
from haemolink.core.supabase import RpcError, RpcTransport, SupabaseGateway, is_retryable_transport_error
from haemolink.domains.geolocation.service import Fix, PositionFeed, position_feed

logger = logging.getLogger(__name__)


VERIFY_OTP_RPC = "verify_delivery_otp"
OTP_LENGTH = 6
OTP_INVALID = "Enter a 6-digit OTP"
OTP_FAILED = "OTP verification failed"
OTP_VERIFIED = "Delivery OTP verified. Patient can pay now."


@dataclass(frozen=True)
class OtpResult:
    ok: bool
    message: str


def verify_delivery_otp(transports: Sequence[RpcTransport], *, delivery_id: str, otp: str) -> OtpResult:
    """
    Rider-side confirmation of the handoff code the patient reads out.
    A verified OTP is what unlocks payment on the patient's tracking view.
    """
    code = (otp or "").strip()
    delivery_id = (delivery_id or "").strip()
    if not is_uuid(delivery_id) or len(code) != OTP_LENGTH:
        return OtpResult(ok=False, message=OTP_INVALID)

    params = {"p_delivery_id": delivery_id, "p_otp": code}
    for i, transport in enumerate(transports):
        is_fallback = i > 0
        try:
            body = transport.call(VERIFY_OTP_RPC, params, failure_label=OTP_FAILED)
        except RpcError as e:
            if is_retryable_transport_error(e, on_network=False):
                continue
            logger.warning("%s failed delivery_id=%s err=%s", VERIFY_OTP_RPC, delivery_id, e.message)
            return OtpResult(ok=False, message=e.message or OTP_FAILED)
        if isinstance(body, list):
            body = body[0] if body else None
        if not isinstance(body, dict) or not body.get("ok"):
            message = body.get("message") if isinstance(body, dict) else None
            # Only the raw endpoint's rejection body is shown to the rider.
            if not (is_fallback and isinstance(message, str) and message):
                message = OTP_FAILED
            return OtpResult(ok=False, message=message)
        logger.info("delivery otp verified delivery_id=%s", delivery_id)
        return OtpResult(ok=True, message=OTP_VERIFIED)
    return OtpResult(ok=False, message=OTP_FAILED)


@dataclass(frozen=True)
class PositionReport:
    accepted: bool
    persisted: bool
    watchers: int = 0


class RiderPositionReporter:
    """
    Rider fixes: imprecise ones are dropped, every other fix is published to
    the in-process feed, and backend writes are throttled per rider.
    """

    def __init__(
        self,
        feed: PositionFeed,
        *,
        min_interval_seconds: float | None = None,
        max_accuracy_m: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.feed = feed
        self.min_interval_seconds = (
            min_interval_seconds if min_interval_seconds is not None else settings.rider_position_min_interval_seconds
        )
        self.max_accuracy_m = max_accuracy_m if max_accuracy_m is not None else settings.rider_position_max_accuracy_m
        self.clock = clock
        self._lock = threading.Lock()
        self._last_write: dict[str, float] = {}

    def _claim_write_slot(self, rider_id: str) -> bool:
        now = self.clock()
        with self._lock:
            last = self._last_write.get(rider_id)
            if last is not None and now - last < self.min_interval_seconds:
                return False
            self._last_write[rider_id] = now
            return True

    def report(self, gateway: SupabaseGateway, *, rider_id: str, delivery_id: str | None, fix: Fix) -> PositionReport:
        if fix.accuracy is not None and fix.accuracy > self.max_accuracy_m:
            logger.debug("rider fix ignored rider=%s accuracy=%s", rider_id, fix.accuracy)
            return PositionReport(accepted=False, persisted=False)

        watchers = self.feed.publish(rider_id, fix)
        if not self._claim_write_slot(rider_id):
            return PositionReport(accepted=True, persisted=False, watchers=watchers)

        try:
            gateway.table("rider_profiles").update({"latitude": fix.lat, "longitude": fix.lng}).eq(
                "user_id", rider_id
            ).execute()
            if delivery_id:
                gateway.table("rider_positions").insert(
                    {
                        "delivery_id": delivery_id,
                        "rider_id": rider_id,
                        "latitude": fix.lat,
                        "longitude": fix.lng,
                        "accuracy": fix.accuracy,
                    }
                ).execute()
        except Exception as e:
            logger.warning("rider position write failed rider=%s delivery_id=%s err=%s", rider_id, delivery_id, e)
            return PositionReport(accepted=True, persisted=False, watchers=watchers)
        return PositionReport(accepted=True, persisted=True, watchers=watchers)


rider_position_reporter = RiderPositionReporter(position_feed)
