import logging

from flask import current_app, session

from .api import get_api
from .exceptions import ApiError, AuthExpiredError
from .reports import extract_rows

_logger = logging.getLogger(__name__)


def get_cache():
    return current_app.extensions["fuelsync_cache"]


def _scope():
    user = session.get("api_user") or {}
    return str(user.get("id") or "anonymous")


def _cached(key, fetch):
    # the user scope goes last so prefix invalidation reaches every user
    return get_cache().get_or_fetch(tuple(key) + (_scope(),), fetch)


def invalidate(*prefixes):
    cache = get_cache()
    for prefix in prefixes:
        cache.invalidate(tuple(prefix))


def _soft(fetch, default, label):
    # wrap _cached, never the reverse, so a fallback is never stored
    try:
        return fetch()
    except AuthExpiredError:
        raise
    except ApiError as exc:
        _logger.warning("[API] %s unavailable: %s", label, exc.message)
        return default


def login(email, password):
    api = get_api()
    result = api.post("/auth/login", {"email": email, "password": password})
    if not isinstance(result, dict) or not result.get("token"):
        raise ApiError("Login failed", status_code=401, endpoint="/auth/login")

    token = result["token"]
    user = result.get("user") or {}
    if user.get("id") is None:
        # older backends only return the token
        api.token = token
        user = current_profile() or {}
    return token, user


def logout():
    get_api().post("/auth/logout")


def current_profile():
    return get_api().get("/auth/me")


def list_stations():
    return _cached(("stations",), lambda: extract_rows(get_api().get("/stations")))


def get_station(station_id):
    return _cached(("stations", str(station_id)), lambda: get_api().get(f"/stations/{station_id}"))


def create_station(data):
    result = get_api().post("/stations", data)
    invalidate(("stations",), ("owner-dashboard-stats",))
    return result


def update_station(station_id, data):
    result = get_api().put(f"/stations/{station_id}", data)
    invalidate(("stations",))
    return result


def delete_station(station_id):
    result = get_api().delete(f"/stations/{station_id}")
    invalidate(("stations",), ("pumps", str(station_id)), ("owner-dashboard-stats",))
    return result


def list_pumps(station_id):
    return _cached(
        ("pumps", str(station_id)),
        lambda: extract_rows(get_api().get(f"/stations/{station_id}/pumps")),
    )


def create_pump(station_id, data):
    result = get_api().post(f"/stations/{station_id}/pumps", data)
    invalidate(("pumps", str(station_id)), ("stations",))
    return result


def create_nozzle(station_id, pump_id, data):
    result = get_api().post(f"/stations/pumps/{pump_id}/nozzles", data)
    invalidate(("pumps", str(station_id)))
    return result


def list_fuel_prices(station_id):
    def fetch():
        payload = get_api().get(f"/stations/{station_id}/prices")
        if isinstance(payload, dict) and isinstance(payload.get("current"), list):
            return payload["current"]
        return extract_rows(payload)

    return _cached(("fuel-prices", str(station_id)), fetch)


def set_fuel_price(station_id, fuel_type, price, effective_from):
    result = get_api().post(
        f"/stations/{station_id}/prices",
        {"fuelType": fuel_type, "price": price, "effectiveFrom": effective_from},
    )
    invalidate(("fuel-prices", str(station_id)))
    return result


def latest_readings(station_id, nozzle_ids):
    nozzle_ids = [str(nozzle_id) for nozzle_id in nozzle_ids]
    if not nozzle_ids:
        return {}

    def fetch():
        payload = get_api().get("/readings/latest", params={"ids": ",".join(nozzle_ids)})
        if not isinstance(payload, dict):
            return {}
        return {str(key): value for key, value in payload.items()}

    return _soft(
        lambda: _cached(("latest-readings", str(station_id), ",".join(sorted(nozzle_ids))), fetch),
        {},
        "latest readings",
    )


def list_readings(station_id, start_date, end_date):
    return _cached(
        ("readings", str(station_id), start_date, end_date),
        lambda: extract_rows(
            get_api().get(
                "/readings",
                params={"stationId": station_id, "startDate": start_date, "endDate": end_date},
            )
        ),
    )


def create_reading(station_id, data):
    result = get_api().post("/readings", data)
    station_id = str(station_id)
    invalidate(
        ("pumps", station_id),
        ("latest-readings", station_id),
        ("readings", station_id),
        ("daily-sales", station_id),
        ("readings-for-settlement", station_id),
    )
    return result


def list_creditors(station_id):
    if not station_id:
        return []
    return _soft(
        lambda: _cached(
            ("creditors", str(station_id)),
            lambda: extract_rows(get_api().get(f"/stations/{station_id}/creditors")),
        ),
        [],
        "creditors",
    )


def create_creditor(station_id, data):
    result = get_api().post(f"/stations/{station_id}/creditors", data)
    invalidate(("creditors", str(station_id)), ("credit-ledger",))
    return result


def settle_creditor(station_id, creditor_id, data):
    result = get_api().post(f"/credits/stations/{station_id}/creditors/{creditor_id}/settle", data)
    invalidate(
        ("creditors", str(station_id)),
        ("credit-ledger",),
        ("credit-transactions", str(station_id)),
    )
    return result


def creditor_transactions(station_id, creditor_id):
    return _soft(
        lambda: _cached(
            ("credit-transactions", str(station_id), str(creditor_id)),
            lambda: extract_rows(
                get_api().get(
                    f"/stations/{station_id}/credit-transactions",
                    params={"creditorId": creditor_id},
                )
            ),
        ),
        [],
        "credit transactions",
    )


def credit_ledger(search="", station_id=None):
    params = {}
    if search:
        params["search"] = search
    if station_id:
        params["stationId"] = station_id
    return _cached(
        ("credit-ledger", search, str(station_id or "")),
        lambda: extract_rows(get_api().get("/creditors/ledger", params=params or None)),
    )


def list_employees(station_id=None):
    params = {"role": "employee,manager"}
    if station_id:
        params["stationId"] = station_id
    return _cached(
        ("employees", str(station_id or "")),
        lambda: extract_rows(get_api().get("/users", params=params)),
    )


def create_employee(data):
    result = get_api().post("/users", data)
    invalidate(("employees",), ("owner-dashboard-stats",))
    return result


def update_employee(employee_id, data):
    result = get_api().put(f"/users/{employee_id}", data)
    invalidate(("employees",))
    return result


def delete_employee(employee_id):
    result = get_api().delete(f"/users/{employee_id}")
    invalidate(("employees",), ("owner-dashboard-stats",))
    return result


def submit_quick_entry(payload):
    station_id = str(payload.get("stationId"))
    result = get_api().post("/transactions/quick-entry", payload)
    invalidate(
        ("pumps", station_id),
        ("latest-readings", station_id),
        ("daily-sales",),
        ("readings",),
        ("readings-for-settlement", station_id),
        ("transactions", station_id),
        ("stations",),
        ("creditors", station_id),
        ("owner-dashboard-stats",),
    )
    return result


def daily_sales(station_id, sales_date):
    return _cached(
        ("daily-sales", str(station_id), sales_date),
        lambda: get_api().get(f"/stations/{station_id}/daily-sales", params={"date": sales_date}) or None,
    )


def readings_for_settlement(station_id, settlement_date):
    return _soft(
        lambda: _cached(
            ("readings-for-settlement", str(station_id), settlement_date),
            lambda: get_api().get(
                f"/stations/{station_id}/readings-for-settlement",
                params={"date": settlement_date},
            )
            or None,
        ),
        None,
        "readings for settlement",
    )


def list_settlements(station_id):
    return _soft(
        lambda: _cached(
            ("settlements", str(station_id)),
            lambda: extract_rows(get_api().get(f"/stations/{station_id}/settlements")),
        ),
        [],
        "settlements",
    )


def submit_settlement(station_id, payload):
    result = get_api().post(f"/stations/{station_id}/settlements", payload)
    invalidate(
        ("daily-sales",),
        ("settlements", str(station_id)),
        ("readings-for-settlement", str(station_id)),
    )
    return result


def owner_stats():
    return _soft(
        lambda: _cached(("owner-dashboard-stats",), lambda: get_api().get("/dashboard/owner/stats") or {}),
        {},
        "owner stats",
    )


def owner_analytics(start_date, end_date, station_id=None):
    params = {"startDate": start_date, "endDate": end_date}
    if station_id:
        params["stationId"] = station_id
    return _cached(
        ("analytics", start_date, end_date, str(station_id or "all")),
        lambda: get_api().get("/dashboard/owner/analytics", params=params) or {},
    )


def sales_report(start_date, end_date):
    return _cached(
        ("sales-report", start_date, end_date),
        lambda: extract_rows(
            get_api().get("/analytics/sales", params={"startDate": start_date, "endDate": end_date})
        ),
    )
