from typing import Any

from haemolink.utils.geo import is_finite_number, js_round


BASE_FARE_INR = 30
PER_KM_INR = 18
MIN_FARE_INR = 90

# Below this distance there is no ride to charge for.
NO_RIDE_KM = 0.01


def compute_fare_inr(distance_km: Any) -> int:
    km = max(0.0, float(distance_km)) if is_finite_number(distance_km) else 0.0
    if km < NO_RIDE_KM:
        return 0
    raw = BASE_FARE_INR + km * PER_KM_INR
    return js_round(max(MIN_FARE_INR, raw))
