from fastapi import APIRouter, Depends

from haemolink.core.deps import get_principal
from haemolink.core.security import Principal
from haemolink.domains.geolocation.schemas import FixAcceptedOut, FixIn
from haemolink.domains.geolocation.service import Fix, PositionFeed, position_feed


router = APIRouter()


def get_position_feed() -> PositionFeed:
    return position_feed


@router.post("/positions", response_model=FixAcceptedOut)
def push_position(
    payload: FixIn,
    principal: Principal = Depends(get_principal),
    feed: PositionFeed = Depends(get_position_feed),
) -> FixAcceptedOut:
    """Device-side fix for the caller; wakes any acquisition waiting on this user."""
    fix = Fix(lat=payload.lat, lng=payload.lng, accuracy=payload.accuracy, heading=payload.heading, speed=payload.speed)
    return FixAcceptedOut(watchers=feed.publish(principal.sub, fix))
