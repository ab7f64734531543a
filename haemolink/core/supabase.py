import logging
from typing import Any, Protocol

import httpx
import requests
from supabase import Client, create_client

from haemolink.core.config import settings

logger = logging.getLogger(__name__)


MISSING_FUNCTION_CODE = "PGRST202"
_MISSING_FUNCTION_MARKERS = (
    "could not find the function",
    "function public.get_patient_tracking",
    "missing required parameter",
    "invalid parameters",
)
_NO_API_KEY_MARKER = "no api key found"


class RpcError(Exception):
    """Backend failure normalised across the supabase client and the raw REST endpoint."""

    def __init__(
        self,
        message: str = "",
        *,
        code: str | None = None,
        details: str | None = None,
        hint: str | None = None,
        status: int | None = None,
        network: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details
        self.hint = hint
        self.status = status
        self.network = network

    def blob(self) -> str:
        return "\n".join([self.message or "", self.hint or "", self.details or ""]).lower()

    def describe(self, default: str = "Payment failed") -> str:
        parts = [self.message, f"code: {self.code}" if self.code else "", self.details or "", self.hint or ""]
        return " • ".join(p for p in parts if p) or default


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def rpc_error_from_exception(exc: BaseException) -> RpcError:
    if isinstance(exc, RpcError):
        return exc
    if isinstance(exc, (requests.RequestException, httpx.TransportError)):
        return RpcError(f"failed to fetch: {exc}", network=True)
    # postgrest APIError carries the PostgREST error body as attributes.
    message = _str_or_none(getattr(exc, "message", None)) or str(exc)
    return RpcError(
        message,
        code=_str_or_none(getattr(exc, "code", None)),
        details=_str_or_none(getattr(exc, "details", None)),
        hint=_str_or_none(getattr(exc, "hint", None)),
    )


def is_missing_function_error(err: RpcError) -> bool:
    if err.code == MISSING_FUNCTION_CODE:
        return True
    msg = (err.message or "").lower()
    return any(marker in msg for marker in _MISSING_FUNCTION_MARKERS)


def is_retryable_transport_error(err: RpcError, *, on_network: bool = True, on_bad_request: bool = False) -> bool:
    """
    Decides whether the next transport in the strategy list should be tried.
    Logical failures (`ok: false` bodies) never reach this check.
    """
    if _NO_API_KEY_MARKER in err.blob():
        return True
    if on_network and err.network:
        return True
    if on_bad_request and err.status == 400:
        return True
    return False


class RpcTransport(Protocol):
    name: str

    def call(self, fn: str, params: dict, *, failure_label: str = "RPC failed") -> Any: ...


class SupabaseRpcTransport:
    name = "rpc"

    def __init__(self, client: Client) -> None:
        self.client = client

    def call(self, fn: str, params: dict, *, failure_label: str = "RPC failed") -> Any:
        try:
            resp = self.client.rpc(fn, params).execute()
        except Exception as e:
            raise rpc_error_from_exception(e) from e
        return resp.data


class RestRpcTransport:
    name = "rest"

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        access_token: str | None = None,
        session: requests.Session | None = None,
        timeout: float | None = None,
        apikey_in_query: bool = False,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.session = session or requests.Session()
        self.timeout = timeout if timeout is not None else settings.rpc_timeout_seconds
        self.apikey_in_query = apikey_in_query

    def call(self, fn: str, params: dict, *, failure_label: str = "RPC failed") -> Any:
        url = f"{self.base_url}/rest/v1/rpc/{fn}"
        headers = {"apikey": self.api_key, "Content-Type": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        query = {"apikey": self.api_key} if self.apikey_in_query else None
        try:
            resp = self.session.post(url, json=params, headers=headers, params=query, timeout=self.timeout)
        except requests.RequestException as e:
            raise RpcError(f"failed to fetch: {e}", network=True) from e

        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.status_code // 100 != 2:
            err = body if isinstance(body, dict) else {}
            raise RpcError(
                _str_or_none(err.get("message")) or f"{failure_label} ({resp.status_code})",
                code=_str_or_none(err.get("code")),
                details=_str_or_none(err.get("details")),
                hint=_str_or_none(err.get("hint")),
                status=resp.status_code,
            )
        return body


class SupabaseGateway:
    """
    Per-caller access to the backend: the caller's access token is forwarded on
    both the supabase client and the raw REST RPC endpoint.
    """

    def __init__(
        self,
        *,
        url: str | None = None,
        anon_key: str | None = None,
        access_token: str | None = None,
        client: Client | None = None,
        http: requests.Session | None = None,
    ) -> None:
        self.url = (url or settings.supabase_url).rstrip("/")
        self.anon_key = anon_key if anon_key is not None else settings.supabase_anon_key
        self.access_token = access_token
        self._client = client
        self._http = http

    @property
    def client(self) -> Client:
        if self._client is None:
            client = create_client(self.url, self.anon_key)
            if self.access_token:
                client.postgrest.auth(self.access_token)
            self._client = client
        return self._client

    def primary(self) -> SupabaseRpcTransport:
        return SupabaseRpcTransport(self.client)

    def fallback(self, *, apikey_in_query: bool = False) -> RestRpcTransport:
        return RestRpcTransport(
            base_url=self.url,
            api_key=self.anon_key,
            access_token=self.access_token,
            session=self._http,
            apikey_in_query=apikey_in_query,
        )

    def transports(self, *, apikey_in_query: bool = False) -> list[RpcTransport]:
        return [self.primary(), self.fallback(apikey_in_query=apikey_in_query)]

    def rpc(self, fn: str, params: dict) -> Any:
        return self.primary().call(fn, params)

    def table(self, name: str):
        return self.client.table(name)


def supabase_configured() -> bool:
    return bool(settings.supabase_url and settings.supabase_anon_key)
