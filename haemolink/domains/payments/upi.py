import time
from urllib.parse import urlencode

from haemolink.core.config import settings
from haemolink.utils.geo import is_finite_number, js_round


def is_likely_upi_vpa(vpa: str | None) -> bool:
    """name@handle shape only; the PSP does the real validation."""
    v = (vpa or "").strip()
    if len(v) < 3 or len(v) > 80:
        return False
    at = v.find("@")
    return 0 < at < len(v) - 1


def upi_amount(fare: float | None) -> int | None:
    if not is_finite_number(fare):
        return None
    return max(0, js_round(float(fare)))


def upi_transaction_ref(delivery_id: str | None, *, now_ms: int | None = None) -> str:
    if delivery_id:
        return delivery_id[:18]
    return str(now_ms if now_ms is not None else int(time.time() * 1000))


def build_upi_uri(
    *,
    vpa: str,
    payee_name: str | None,
    fare: float | None,
    delivery_id: str | None,
    now_ms: int | None = None,
) -> str:
    tr = upi_transaction_ref(delivery_id, now_ms=now_ms)
    params: dict[str, str] = {
        "pa": (vpa or "").strip(),
        "pn": (payee_name or "").strip() or settings.upi_default_payee,
    }
    amount = upi_amount(fare)
    if amount is not None:
        params["am"] = str(amount)
    params["cu"] = settings.upi_currency
    params["tn"] = f"Blood delivery fare {tr}"
    params["tr"] = tr
    return f"upi://pay?{urlencode(params)}"


def upi_qr_image_url(uri: str, *, size: int | None = None) -> str:
    px = size or settings.qr_image_size
    return f"{settings.qr_image_base_url}?{urlencode({'size': f'{px}x{px}', 'data': uri})}"
