import math
from dataclasses import dataclass
from typing import Any


def is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def as_coord(value: Any) -> float | None:
    """
    Coordinates arrive from the backend as numbers or numeric strings.
    Anything else (None, "", "abc", nan) is treated as missing.
    """
    if is_finite_number(value):
        return float(value)
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def js_round(value: float) -> int:
    # Half-up rounding, matching what the web client displays.
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float

    def is_valid(self) -> bool:
        return is_finite_number(self.lat) and is_finite_number(self.lng)

    def as_pair(self) -> tuple[float, float]:
        return (self.lat, self.lng)

    @classmethod
    def parse(cls, obj: Any) -> "LatLng | None":
        if isinstance(obj, LatLng):
            return obj if obj.is_valid() else None
        if not isinstance(obj, dict):
            return None
        lat = as_coord(obj.get("lat"))
        lng = as_coord(obj.get("lng"))
        if lat is None or lng is None:
            return None
        return cls(lat=lat, lng=lng)
