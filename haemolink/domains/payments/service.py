import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy.orm import Session

from haemolink.core.security import is_uuid
from haemolink.core.supabase import RpcError, RpcTransport, is_retryable_transport_error
from haemolink.domains.payments.models import UPI_NAME_KEY, UPI_VPA_KEY, LocalPreference
from haemolink.domains.tracking.schemas import TrackingSnapshot
from haemolink.domains.tracking.service import TrackingSession, can_pay
from haemolink.utils.geo import as_coord

logger = logging.getLogger(__name__)


PAYMENT_RPC = "create_delivery_payment"
PAYMENT_METHODS = ("cash", "upi")


@dataclass(frozen=True)
class PaymentResult:
    ok: bool
    message: str
    amount: float | None = None


def logical_failure_message(body: Any) -> str:
    body = body if isinstance(body, dict) else {}
    message = body.get("message")
    if isinstance(message, str) and message.strip():
        return message
    reason = body.get("reason")
    if isinstance(reason, str) and reason.strip():
        return f"Payment failed: {reason}"
    return "Payment failed"


def format_inr(amount: float | None) -> str:
    value = float(amount or 0.0)
    if value.is_integer():
        return f"{int(value):,}"
    return f"{value:,.3f}".rstrip("0").rstrip(".")


def payment_gate_error(snapshot: TrackingSnapshot | None) -> str | None:
    """Checked before any backend call; the backend enforces the same gate."""
    if snapshot is None or not snapshot.delivery_id:
        return "No delivery linked yet"
    if not is_uuid(snapshot.delivery_id):
        return "Invalid delivery id"
    if not can_pay(snapshot):
        return "Payment unlocks after delivery OTP verification"
    return None


class PaymentInitiator:
    """
    Records a cash/UPI payment against a delivery.

    The supabase client is tried first. The raw REST endpoint is used only when
    the client fails with an api-key error or HTTP 400; an `ok: false` body is a
    business failure and is reported as-is without a second attempt.
    """

    def __init__(self, transports: Sequence[RpcTransport]) -> None:
        self.transports = list(transports)

    def _submit(self, delivery_id: str, method: str) -> dict:
        params = {"p_delivery_id": delivery_id, "p_payment_method": method}
        last_err: RpcError | None = None
        for transport in self.transports:
            try:
                body = transport.call(PAYMENT_RPC, params, failure_label="Payment failed")
            except RpcError as e:
                last_err = e
                if is_retryable_transport_error(e, on_network=False, on_bad_request=True):
                    logger.warning(
                        "%s via %s failed, trying next transport: %s",
                        PAYMENT_RPC,
                        getattr(transport, "name", "?"),
                        e.message,
                    )
                    continue
                raise
            if isinstance(body, list):
                body = body[0] if body else None
            if not isinstance(body, dict) or not body.get("ok"):
                raise RpcError(logical_failure_message(body))
            return body
        raise last_err or RpcError("Payment failed")

    def pay(self, snapshot: TrackingSnapshot | None, method: str) -> PaymentResult:
        gate = payment_gate_error(snapshot)
        if gate is not None:
            return PaymentResult(ok=False, message=gate)
        if method not in PAYMENT_METHODS:
            return PaymentResult(ok=False, message=f"Unsupported payment method: {method}")

        delivery_id = snapshot.delivery_id.strip()
        try:
            body = self._submit(delivery_id, method)
        except RpcError as e:
            logger.error("%s failed delivery_id=%s method=%s err=%s", PAYMENT_RPC, delivery_id, method, e.message)
            return PaymentResult(ok=False, message=e.describe("Payment failed"))

        amount = as_coord(body.get("amount"))
        logger.info("payment recorded delivery_id=%s method=%s amount=%s", delivery_id, method, amount)
        return PaymentResult(
            ok=True,
            message=f"Payment recorded: ₹{format_inr(amount)}",
            amount=amount,
        )


def pay_for_session(session: TrackingSession, initiator: PaymentInitiator, method: str) -> PaymentResult:
    result = initiator.pay(session.tracking, method)
    if result.ok:
        session.mark_paid(result.message)
    else:
        session.record_payment_message(False, result.message)
    return result


def get_upi_preferences(db: Session, *, user_id: str) -> dict[str, str | None]:
    rows = (
        db.query(LocalPreference)
        .filter(LocalPreference.user_id == user_id, LocalPreference.key.in_([UPI_VPA_KEY, UPI_NAME_KEY]))
        .all()
    )
    by_key = {r.key: r.value for r in rows}
    return {"vpa": by_key.get(UPI_VPA_KEY), "payee_name": by_key.get(UPI_NAME_KEY)}


def put_upi_preferences(db: Session, *, user_id: str, vpa: str, payee_name: str) -> dict[str, str | None]:
    now = datetime.now(timezone.utc)
    for key, value in ((UPI_VPA_KEY, vpa), (UPI_NAME_KEY, payee_name)):
        pref = (
            db.query(LocalPreference)
            .filter(LocalPreference.user_id == user_id, LocalPreference.key == key)
            .one_or_none()
        )
        if pref is None:
            pref = LocalPreference(user_id=user_id, key=key)
            db.add(pref)
        pref.value = value
        pref.updated_at = now
    db.commit()
    return {"vpa": vpa, "payee_name": payee_name}
