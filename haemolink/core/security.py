import re
from dataclasses import dataclass
from typing import Literal

import jwt

from haemolink.core.config import settings


Role = Literal["patient", "donor", "rider", "hospital"]

ROLES: tuple[str, ...] = ("patient", "donor", "rider", "hospital")

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def is_uuid(value: object) -> bool:
    if not isinstance(value, str):
        return False
    return bool(_UUID_RE.match(value.strip()))


@dataclass(frozen=True)
class Principal:
    sub: str
    access_token: str
    email: str | None = None
    role: Role | None = None


def decode_bearer_token(token: str) -> Principal:
    """
    Supabase Auth access tokens are HS256 JWTs signed with the project JWT secret.
    The role is not trusted from the token; it is resolved against the `users` table.
    """
    payload = jwt.decode(
        token,
        settings.supabase_jwt_secret,
        algorithms=["HS256"],
        audience=settings.supabase_jwt_audience,
    )
    email = payload.get("email")
    return Principal(
        sub=str(payload["sub"]),
        access_token=token,
        email=str(email) if email else None,
    )
