from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest

from fuelsync_app import create_app

BASE_URL = "http://api.test/api/v1"


@dataclass
class FakeResponse:
    status_code: int
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        if self.body is None:
            raise ValueError("response has no JSON body")
        return self.body


@dataclass
class RecordedCall:
    method: str
    path: str
    json: Any
    params: dict[str, Any] | None
    headers: dict[str, str]
    timeout: float | None


@dataclass
class FakeBackend:
    """Stands in for ``requests.Session``; answers from ``routes`` and records calls."""

    base_url: str = BASE_URL
    routes: dict[tuple[str, str], Any] = field(default_factory=dict)
    calls: list[RecordedCall] = field(default_factory=list)
    closed: bool = False

    def reply(self, method: str, path: str, body: Any = None, status: int = 200) -> None:
        self.routes[(method, path)] = (status, body)

    def fail(self, method: str, path: str, exc: Exception) -> None:
        self.routes[(method, path)] = exc

    def request(self, method, url, json=None, params=None, headers=None, timeout=None):
        path = url[len(self.base_url):] if url.startswith(self.base_url) else url
        self.calls.append(
            RecordedCall(
                method=method,
                path=path,
                json=json,
                params=params,
                headers=dict(headers or {}),
                timeout=timeout,
            )
        )

        route = self.routes.get((method, path))
        if route is None:
            return FakeResponse(
                404,
                {"success": False, "error": {"message": f"No route for {method} {path}"}},
                {"content-type": "application/json"},
            )
        if isinstance(route, Exception):
            raise route

        status, body = route
        if body is None:
            return FakeResponse(status, None, {"content-type": "text/plain"})
        return FakeResponse(status, body, {"content-type": "application/json; charset=utf-8"})

    def calls_to(self, method: str, path: str) -> list[RecordedCall]:
        return [call for call in self.calls if call.method == method and call.path == path]

    def close(self) -> None:
        self.closed = True


def seed_station(backend: FakeBackend) -> None:
    backend.reply("GET", "/stations", {"success": True, "data": [
        {"id": "st-1", "name": "Main Road", "code": "MR1", "city": "Pune", "isActive": True},
    ]})
    backend.reply("GET", "/stations/st-1", {"success": True, "data": {
        "id": "st-1", "name": "Main Road", "code": "MR1", "city": "Pune",
    }})
    backend.reply("GET", "/stations/st-1/pumps", {"success": True, "data": [
        {
            "id": "p-1",
            "pumpNumber": 1,
            "status": "active",
            "nozzles": [
                {"id": "n-1", "nozzleNumber": 1, "fuelType": "petrol", "status": "active",
                 "initialReading": 0, "lastReading": 900},
                {"id": "n-2", "nozzleNumber": 2, "fuelType": "diesel", "status": "active",
                 "initialReading": 0, "lastReading": 500},
            ],
        }
    ]})
    backend.reply("GET", "/stations/st-1/prices", {"success": True, "data": {"current": [
        {"fuelType": "PETROL", "price": 100},
        {"fuelType": "DIESEL", "price": 90},
    ]}})
    backend.reply("GET", "/stations/st-1/creditors", {"success": True, "data": [
        {"id": "cr-1", "name": "Fleet Co", "phone": "9000000000", "creditLimit": 5000, "currentBalance": 1000},
    ]})
    backend.reply("GET", "/readings/latest", {"success": True, "data": {"n-1": 1000, "n-2": 500}})
    backend.reply("GET", "/dashboard/owner/stats", {"success": True, "data": {
        "totalStations": 2,
        "activeStations": 1,
        "totalEmployees": 4,
        "todaySales": 12500,
        "monthSales": 250000,
        "pendingActions": 0,
    }})
    backend.reply("GET", "/dashboard/owner/analytics", {"success": True, "data": {
        "overview": {"totalSales": 12500, "totalQuantity": 120, "totalTransactions": 8,
                     "averageTransaction": 1562.5, "salesGrowth": 12.5, "quantityGrowth": -3},
        "salesByStation": [{"stationName": "Main Road", "sales": 12500}],
        "salesByFuelType": [{"fuelType": "petrol", "sales": 9000}],
        "dailyTrend": [{"date": "2024-05-01", "sales": 12500, "quantity": 120}],
        "topPerformingStations": [{"name": "Main Road", "sales": 12500}],
        "employeePerformance": [{"name": "Ravi", "transactions": 8, "sales": 12500}],
    }})


@pytest.fixture
def backend():
    fake = FakeBackend()
    seed_station(fake)
    return fake


@pytest.fixture
def app(backend):
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test",
            "API_BASE_URL": BASE_URL,
            "API_TIMEOUT": 5,
        },
        http_session=backend,
    )
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client, backend):
    def _login(role="manager", user_id="u-1"):
        backend.reply("POST", "/auth/login", {"success": True, "data": {
            "token": f"tok-{role}",
            "user": {"id": user_id, "email": f"{role}@example.com", "name": role.title(), "role": role},
        }})
        response = client.post("/login", data={"email": f"{role}@example.com", "password": "secret"})
        assert response.status_code == 302
        return response

    return _login
