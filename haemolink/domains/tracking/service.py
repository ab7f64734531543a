import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Sequence

from fastapi import HTTPException, status

from haemolink.core.config import settings
from haemolink.core.security import is_uuid
from haemolink.core.supabase import RpcTransport
from haemolink.domains.requests.schemas import BloodRequestOut
from haemolink.domains.routing.fare import compute_fare_inr
from haemolink.domains.routing.service import Route, RouteClient
from haemolink.domains.tracking.map import MapView, render_map
from haemolink.domains.tracking.poller import TrackingClient
from haemolink.domains.tracking.schemas import (
    DirectionOut,
    MapOut,
    PaymentMessageOut,
    RouteStatsOut,
    TimelineStepOut,
    TrackingSnapshot,
    TrackingViewOut,
)
from haemolink.utils.geo import LatLng, is_finite_number

logger = logging.getLogger(__name__)


OTP_PLACEHOLDER = "— — — —"
MAX_DIRECTIONS = 5


def can_pay(snapshot: TrackingSnapshot | None) -> bool:
    if snapshot is None or not snapshot.delivery_id:
        return False
    if snapshot.otp_verified is not True:
        return False
    return (snapshot.payment_status or "").lower() != "paid"


def pickup_point(snapshot: TrackingSnapshot | None) -> LatLng | None:
    return LatLng.parse(snapshot.pickup) if snapshot is not None else None


def drop_point(snapshot: TrackingSnapshot | None) -> LatLng | None:
    return LatLng.parse(snapshot.drop) if snapshot is not None else None


def rider_point(snapshot: TrackingSnapshot | None) -> LatLng | None:
    if snapshot is None or snapshot.rider is None:
        return None
    return LatLng.parse({"lat": snapshot.rider.lat, "lng": snapshot.rider.lng})


def displayed_distance_km(snapshot: TrackingSnapshot | None, route: Route | None) -> float | None:
    if snapshot is not None and is_finite_number(snapshot.distance_km):
        return float(snapshot.distance_km)
    if route is not None:
        return route.distance_km
    return None


def displayed_fare(snapshot: TrackingSnapshot | None, route: Route | None) -> float | None:
    """Server fare first; a locally computed fare is only a placeholder."""
    if snapshot is not None and is_finite_number(snapshot.fare_amount):
        return float(snapshot.fare_amount)
    distance = displayed_distance_km(snapshot, route)
    if distance is None:
        return None
    return compute_fare_inr(distance)


def payment_label(snapshot: TrackingSnapshot | None) -> str:
    if snapshot is not None and snapshot.payment_status:
        return snapshot.payment_status
    return "unpaid" if can_pay(snapshot) else "locked"


def build_timeline(request: BloodRequestOut | None, snapshot: TrackingSnapshot | None) -> list[TimelineStepOut]:
    def _status(done: bool) -> str:
        return "completed" if done else "pending"

    has_request = request is not None
    rider_name = snapshot.rider.name if snapshot is not None and snapshot.rider is not None else None
    delivery_status = (snapshot.status or "") if snapshot is not None else ""
    return [
        TimelineStepOut(
            title="Request Created",
            description="Blood request submitted successfully",
            status=_status(has_request),
        ),
        TimelineStepOut(
            title="Packet Prepared",
            description="Blood units prepared and quality checked",
            status=_status(has_request and (request.status == "accepted" or snapshot is not None)),
        ),
        TimelineStepOut(
            title="Rider Assigned",
            description=f"Rider {rider_name} assigned" if snapshot is not None and snapshot.rider is not None
            else "Delivery partner will be assigned in the next phase",
            status=_status(has_request and snapshot is not None and snapshot.rider is not None),
        ),
        TimelineStepOut(
            title="Out for Delivery",
            description="Real-time tracking is active",
            status=_status(has_request and delivery_status in ("in_transit", "picked_up")),
        ),
        TimelineStepOut(
            title="Ready for Transfusion",
            description="Final confirmation and OTP verification",
            status="pending",
        ),
    ]


@dataclass(frozen=True)
class PaymentMessage:
    ok: bool
    message: str


class TrackingSession:
    """
    State behind one patient's tracking screen for one request.

    Every refresh opens a new poll generation; a snapshot is applied only if it
    is newer than the last applied one, so a slow poll cannot overwrite a newer
    result. The route is refetched only when pickup or drop moved.
    """

    def __init__(
        self,
        *,
        request_id: str,
        tracking_client: TrackingClient,
        route_client: RouteClient,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.request_id = request_id
        self.tracking_client = tracking_client
        self.route_client = route_client
        self.now = now
        self._lock = threading.Lock()
        self._issued_generation = 0
        self._applied_generation = 0
        self.tracking: TrackingSnapshot | None = None
        self.route: Route | None = None
        self._route_key: tuple[LatLng, LatLng] | None = None
        self.payment_message: PaymentMessage | None = None
        self.last_updated_at: datetime | None = None

    @property
    def generation(self) -> int:
        return self._applied_generation

    def bind_transports(self, transports: Sequence[RpcTransport]) -> None:
        # Access tokens rotate; transports are rebuilt per caller request.
        self.tracking_client.transports = list(transports)

    def begin_poll(self) -> int:
        with self._lock:
            self._issued_generation += 1
            return self._issued_generation

    def apply(self, generation: int, snapshot: TrackingSnapshot | None) -> bool:
        if snapshot is None:
            return False
        with self._lock:
            if generation <= self._applied_generation:
                logger.info(
                    "dropping stale tracking snapshot request_id=%s generation=%s applied=%s",
                    self.request_id,
                    generation,
                    self._applied_generation,
                )
                return False
            self._applied_generation = generation
            # Server state replaces any optimistic local payment status.
            self.tracking = snapshot
            self.last_updated_at = self.now()
            return True

    def refresh(self) -> TrackingSnapshot | None:
        generation = self.begin_poll()
        snapshot = self.tracking_client.fetch(self.request_id)
        if self.apply(generation, snapshot):
            self.refresh_route(generation, snapshot)
        return self.tracking

    def refresh_route(self, generation: int, snapshot: TrackingSnapshot) -> Route | None:
        pickup = pickup_point(snapshot)
        drop = drop_point(snapshot)
        if pickup is None or drop is None:
            with self._lock:
                if generation >= self._applied_generation:
                    self.route = None
                    self._route_key = None
                return self.route

        key = (pickup, drop)
        with self._lock:
            if key == self._route_key and self.route is not None:
                return self.route

        route = self.route_client.get_route(pickup, drop)
        with self._lock:
            if generation < self._applied_generation:
                return self.route
            if route is not None:
                self.route = route
                self._route_key = key
            elif key != self._route_key:
                # The old polyline belongs to other endpoints; fall back to a straight line.
                self.route = None
                self._route_key = None
            return self.route

    def mark_paid(self, message: str) -> None:
        with self._lock:
            if self.tracking is not None:
                self.tracking = self.tracking.model_copy(update={"payment_status": "paid"})
            self.payment_message = PaymentMessage(ok=True, message=message)

    def record_payment_message(self, ok: bool, message: str) -> None:
        with self._lock:
            self.payment_message = PaymentMessage(ok=ok, message=message)

    def map_view(self) -> MapView:
        snapshot = self.tracking
        route = self.route
        return render_map(
            pickup=pickup_point(snapshot),
            drop=drop_point(snapshot),
            rider=rider_point(snapshot),
            route_coords=route.coords_lat_lng if route is not None else None,
        )

    def view(self, request: BloodRequestOut | None) -> TrackingViewOut:
        snapshot = self.tracking
        route = self.route
        stats = None
        if route is not None and pickup_point(snapshot) is not None and drop_point(snapshot) is not None:
            stats = RouteStatsOut(
                distance_km=route.distance_km,
                duration_min=route.duration_min,
                fare_inr=compute_fare_inr(route.distance_km),
            )
        directions = [
            DirectionOut(instruction=s.instruction, distance_meters=s.distance_meters)
            for s in (route.steps if route is not None else [])[:MAX_DIRECTIONS]
        ]
        msg = self.payment_message
        return TrackingViewOut(
            request=request,
            tracking=snapshot,
            route=stats,
            distance_km=displayed_distance_km(snapshot, route),
            fare_inr=displayed_fare(snapshot, route),
            can_pay=can_pay(snapshot),
            payment_label=payment_label(snapshot),
            otp_display=snapshot.otp if snapshot is not None and snapshot.otp else OTP_PLACEHOLDER,
            timeline=build_timeline(request, snapshot),
            directions=directions,
            map=MapOut(**self.map_view().to_public_dict()),
            payment_message=PaymentMessageOut(ok=msg.ok, message=msg.message) if msg else None,
            last_updated_at=self.last_updated_at.isoformat() if self.last_updated_at else None,
            refresh_interval_seconds=settings.refresh_interval_seconds,
            generation=self.generation,
        )


class TrackingSessionRegistry:
    """In-memory sessions keyed by (user id, request id), least recently used evicted first."""

    def __init__(
        self,
        *,
        max_sessions: int = 1000,
        route_client_factory: Callable[[], RouteClient] = RouteClient,
    ) -> None:
        self.max_sessions = max_sessions
        self.route_client_factory = route_client_factory
        self._lock = threading.Lock()
        self._sessions: "OrderedDict[tuple[str, str], TrackingSession]" = OrderedDict()

    def get(self, user_id: str, request_id: str, transports: Sequence[RpcTransport]) -> TrackingSession:
        key = (user_id, request_id.strip().lower())
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                session = TrackingSession(
                    request_id=request_id.strip(),
                    tracking_client=TrackingClient(transports),
                    route_client=self.route_client_factory(),
                )
                self._sessions[key] = session
                while len(self._sessions) > self.max_sessions:
                    self._sessions.popitem(last=False)
            else:
                self._sessions.move_to_end(key)
        session.bind_transports(transports)
        return session

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


tracking_sessions = TrackingSessionRegistry()


def empty_view() -> TrackingViewOut:
    """View for a patient with no requests yet."""
    return TrackingViewOut(
        timeline=build_timeline(None, None),
        map=MapOut(**render_map(pickup=None, drop=None, rider=None, route_coords=None).to_public_dict()),
        refresh_interval_seconds=settings.refresh_interval_seconds,
    )


def open_session(
    registry: TrackingSessionRegistry,
    *,
    user_id: str,
    request_id: str,
    transports: Sequence[RpcTransport],
    refresh: bool = True,
) -> TrackingSession:
    """
    refresh=False only polls a session that has never applied a snapshot; map and
    payment calls reuse the state of the last dashboard refresh.
    """
    if not is_uuid(request_id):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Invalid request id")
    session = registry.get(user_id, request_id, transports)
    if refresh or session.tracking is None:
        session.refresh()
    return session
