import logging

from fastapi import Depends, HTTPException, Request, status

from haemolink.core.db import SessionLocal
from haemolink.core.security import ROLES, Principal, decode_bearer_token
from haemolink.core.supabase import SupabaseGateway, rpc_error_from_exception

logger = logging.getLogger(__name__)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_principal(request: Request) -> Principal:
    auth = request.headers.get("authorization") or ""
    prefix = "bearer "
    if not auth.lower().startswith(prefix):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    token = auth[len(prefix) :].strip()
    try:
        return decode_bearer_token(token)
    except Exception:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def get_gateway(principal: Principal = Depends(get_principal)) -> SupabaseGateway:
    return SupabaseGateway(access_token=principal.access_token)


def resolve_role(gateway: SupabaseGateway, principal: Principal) -> str | None:
    try:
        resp = gateway.table("users").select("role").eq("id", principal.sub).maybe_single().execute()
    except Exception as e:
        logger.warning("role lookup failed user=%s err=%s", principal.sub, rpc_error_from_exception(e).message)
        return None
    row = getattr(resp, "data", None) if resp is not None else None
    role = row.get("role") if isinstance(row, dict) else None
    return role if role in ROLES else None


def _require_role(role: str):
    def _inner(
        principal: Principal = Depends(get_principal),
        gateway: SupabaseGateway = Depends(get_gateway),
    ) -> Principal:
        if resolve_role(gateway, principal) != role:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"{role.capitalize()} role required")
        return Principal(sub=principal.sub, access_token=principal.access_token, email=principal.email, role=role)

    return _inner


require_patient = _require_role("patient")
require_rider = _require_role("rider")
