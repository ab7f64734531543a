"""
Shared fakes: backend transports, a chainable table query, an HTTP session and a clock.
Nothing here touches the network.
"""
from types import SimpleNamespace
from typing import Any, Callable

import pytest

from haemolink.core.supabase import RpcError


REQUEST_ID = "11111111-1111-1111-1111-111111111111"
DELIVERY_ID = "22222222-2222-4222-8222-222222222222"
PATIENT_ID = "33333333-3333-4333-8333-333333333333"
RIDER_ID = "44444444-4444-4444-8444-444444444444"


class FakeTransport:
    """RpcTransport driven by a handler(fn, params) that returns data or an exception to raise."""

    def __init__(self, handler: Callable[[str, dict], Any], name: str = "rpc") -> None:
        self.handler = handler
        self.name = name
        self.calls: list[tuple[str, dict]] = []

    def call(self, fn: str, params: dict, *, failure_label: str = "RPC failed") -> Any:
        self.calls.append((fn, dict(params)))
        result = self.handler(fn, params)
        if isinstance(result, Exception):
            raise result
        return result


def returning(value: Any) -> Callable[[str, dict], Any]:
    return lambda fn, params: value


def failing(message: str = "", **kwargs: Any) -> Callable[[str, dict], Any]:
    return lambda fn, params: RpcError(message, **kwargs)


class FakeQuery:
    def __init__(self, table: "FakeTable") -> None:
        self.table = table
        self.ops: list[tuple] = []

    def __getattr__(self, name: str):
        def _op(*args: Any, **kwargs: Any) -> "FakeQuery":
            self.ops.append((name, args, kwargs))
            return self

        return _op

    def execute(self) -> SimpleNamespace:
        self.table.executed.append(self.ops)
        if self.table.error is not None:
            raise self.table.error
        kinds = [op[0] for op in self.ops]
        if "insert" in kinds and self.table.insert_data is not None:
            return SimpleNamespace(data=self.table.insert_data)
        return SimpleNamespace(data=self.table.data)


class FakeTable:
    def __init__(self, data: Any = None, *, insert_data: Any = None, error: Exception | None = None) -> None:
        self.data = data if data is not None else []
        self.insert_data = insert_data
        self.error = error
        self.executed: list[list[tuple]] = []

    def ops_named(self, name: str) -> list[tuple]:
        return [op for ops in self.executed for op in ops if op[0] == name]


class FakeGateway:
    """Stands in for SupabaseGateway: named tables plus RPC handlers keyed by function name."""

    def __init__(self, tables: dict[str, FakeTable] | None = None, rpcs: dict[str, Any] | None = None) -> None:
        self.tables = tables or {}
        self.rpcs = rpcs or {}
        self.rpc_calls: list[tuple[str, dict]] = []
        self.transport_list: list[FakeTransport] = []

    def table(self, name: str) -> FakeQuery:
        table = self.tables.setdefault(name, FakeTable())
        return FakeQuery(table)

    def rpc(self, fn: str, params: dict) -> Any:
        self.rpc_calls.append((fn, dict(params)))
        result = self.rpcs.get(fn)
        if isinstance(result, Exception):
            raise result
        return result

    def transports(self, *, apikey_in_query: bool = False) -> list[FakeTransport]:
        return list(self.transport_list)


class FakeResponse:
    def __init__(self, status_code: int = 200, json_data: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._json = json_data
        self.text = text

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("no json")
        return self._json


class FakeHttpSession:
    def __init__(self, response: FakeResponse | Exception | None = None) -> None:
        self.response = response or FakeResponse(200, {})
        self.calls: list[dict] = []

    def _respond(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._respond("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._respond("POST", url, **kwargs)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def osrm_payload(distance_m: float = 5000.0, duration_s: float = 600.0) -> dict:
    return {
        "code": "Ok",
        "routes": [
            {
                "distance": distance_m,
                "duration": duration_s,
                "geometry": {"type": "LineString", "coordinates": [[77.59, 12.97], [77.60, 12.98], [77.61, 12.99]]},
                "legs": [
                    {
                        "steps": [
                            {"distance": 120.5, "name": "MG Road", "maneuver": {"type": "depart"}},
                            {"distance": 800, "name": "", "maneuver": {"instruction": "Turn left"}},
                            {"distance": 0, "maneuver": {}},
                        ]
                    }
                ],
            }
        ],
    }


def tracking_row(**overrides: Any) -> dict:
    row = {
        "delivery_id": DELIVERY_ID,
        "status": "in_transit",
        "rider": {"name": "Ravi", "phone": "+919900000000", "lat": 12.975, "lng": 77.595},
        "pickup": {"lat": 12.97, "lng": 77.59},
        "drop": {"lat": 12.99, "lng": 77.61},
        "otp": "123456",
        "distance_km": None,
        "fare_amount": 150,
        "otp_verified": True,
        "payment_status": "unpaid",
    }
    row.update(overrides)
    return row


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
