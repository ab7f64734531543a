import enum
import logging
import time
from typing import Any, Callable, Sequence

from pydantic import ValidationError

from haemolink.core.config import settings
from haemolink.core.security import is_uuid
from haemolink.core.supabase import RpcError, RpcTransport, is_missing_function_error, is_retryable_transport_error
from haemolink.domains.tracking.schemas import TrackingSnapshot

logger = logging.getLogger(__name__)


TRACKING_RPC = "get_patient_tracking"


class TrackingArgKey(str, enum.Enum):
    P_REQUEST_ID = "p_request_id"
    REQUEST_ID = "request_id"
    ID = "id"
    P_ID = "p_id"


def parse_snapshot(data: Any) -> TrackingSnapshot | None:
    # Set-returning RPCs come back as a list of rows.
    if isinstance(data, list):
        data = data[0] if data else None
    if not isinstance(data, dict):
        return None
    try:
        return TrackingSnapshot.model_validate(data)
    except ValidationError as e:
        logger.warning("tracking snapshot rejected: %s", e.errors()[:3])
        return None


class TrackingClient:
    """
    Polls `get_patient_tracking` for one request.

    The RPC's argument name differs between backend versions, so the last name
    that worked is tried first. Transports are tried in order; the next one is
    used only when the previous failed with an api-key or network error. A fully
    failed attempt starts a cooldown during which calls return None offline.
    """

    def __init__(
        self,
        transports: Sequence[RpcTransport] = (),
        *,
        cooldown_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        preferred_arg_key: TrackingArgKey = TrackingArgKey.P_REQUEST_ID,
    ) -> None:
        self.transports = list(transports)
        self.cooldown_seconds = cooldown_seconds if cooldown_seconds is not None else settings.tracking_cooldown_seconds
        self.clock = clock
        self.preferred_arg_key = preferred_arg_key
        self.next_retry_at = 0.0

    def candidate_keys(self) -> list[TrackingArgKey]:
        keys = [self.preferred_arg_key]
        keys.extend(k for k in TrackingArgKey if k != self.preferred_arg_key)
        return keys

    def in_cooldown(self) -> bool:
        return self.clock() < self.next_retry_at

    def _call_with_keys(self, transport: RpcTransport, request_id: str) -> tuple[bool, Any, RpcError | None]:
        last_err: RpcError | None = None
        for key in self.candidate_keys():
            try:
                data = transport.call(TRACKING_RPC, {key.value: request_id}, failure_label="Tracking RPC failed")
            except RpcError as e:
                last_err = e
                if not is_missing_function_error(e):
                    break
                continue
            self.preferred_arg_key = key
            return True, data, None
        return False, None, last_err

    def fetch(self, request_id: str | None) -> TrackingSnapshot | None:
        """Current snapshot or None; never raises."""
        if not is_uuid(request_id):
            return None
        normalized = request_id.strip()
        if self.in_cooldown():
            return None

        last_err: RpcError | None = None
        for transport in self.transports:
            try:
                ok, data, err = self._call_with_keys(transport, normalized)
            except Exception as e:
                # Transports are expected to raise RpcError only.
                logger.exception("tracking transport %s crashed", getattr(transport, "name", "?"))
                ok, data, err = False, None, RpcError(str(e))
            if ok:
                return parse_snapshot(data)
            last_err = err
            if last_err is None or not is_retryable_transport_error(last_err):
                break

        self.next_retry_at = self.clock() + self.cooldown_seconds
        logger.error(
            "%s failed request_id=%s err=%s",
            TRACKING_RPC,
            normalized,
            last_err.message if last_err else "no transport",
        )
        return None
