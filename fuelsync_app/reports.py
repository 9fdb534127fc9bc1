import csv
import io
import json
from datetime import date, timedelta
from decimal import Decimal

from .calculations import to_number


def extract_rows(payload):
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("data", "rows"):
            value = payload.get(key)
            if isinstance(value, list):
                return value
            if isinstance(value, dict) and isinstance(value.get("data"), list):
                return value["data"]
    return []


def normalize_sales_rows(rows):
    rows = extract_rows(rows)
    if not rows:
        return []

    if rows[0].get("byFuelType") is not None:
        return rows

    if rows[0].get("stationId") is None:
        return []

    reports = {}
    for row in rows:
        key = (str(row.get("stationId")), row.get("readingDate"))
        if key not in reports:
            reports[key] = {
                "date": row.get("readingDate"),
                "stationId": row.get("stationId"),
                "stationName": row.get("stationName"),
                "totalSaleValue": Decimal("0"),
                "totalLiters": Decimal("0"),
                "readingsCount": 0,
                "byFuelType": {},
            }
        entry = reports[key]
        volume = to_number(row.get("deltaVolumeL"))
        amount = to_number(row.get("totalAmount"))
        entry["totalLiters"] += volume
        entry["totalSaleValue"] += amount
        entry["readingsCount"] += 1

        fuel = row.get("fuelType") or "unknown"
        bucket = entry["byFuelType"].setdefault(
            fuel, {"value": Decimal("0"), "liters": Decimal("0"), "count": 0}
        )
        bucket["value"] += amount
        bucket["liters"] += volume
        bucket["count"] += 1

    return list(reports.values())


def fuel_breakdown(report):
    if not report or not report.get("byFuelType"):
        return []

    total = to_number(report.get("totalSaleValue"))
    breakdown = []
    for name, data in report["byFuelType"].items():
        value = to_number(data.get("value"))
        breakdown.append(
            {
                "name": name[:1].upper() + name[1:],
                "liters": float(to_number(data.get("liters"))),
                "value": float(value),
                "count": int(data.get("count") or 0),
                "percentage": float(value / total * 100) if total > 0 else 0.0,
            }
        )
    return breakdown


def to_csv(rows, columns=None):
    """Render dict rows as CSV text.

    ``columns`` entries are either a key or a ``(key, label, formatter)``
    tuple; ``label`` and ``formatter`` may be None.
    """
    if not rows:
        return ""

    if columns:
        normalized = []
        for column in columns:
            if isinstance(column, str):
                normalized.append((column, column, None))
            else:
                key, label, formatter = (tuple(column) + (None, None))[:3]
                normalized.append((key, label or key, formatter))
    else:
        normalized = [(key, key, None) for key in rows[0].keys()]

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([label for _, label, _ in normalized])
    for row in rows:
        values = []
        for key, _, formatter in normalized:
            raw = row.get(key)
            if formatter is not None:
                raw = formatter(raw)
            values.append("" if raw is None else raw)
        writer.writerow(values)
    return buffer.getvalue().rstrip("\n")


def growth_badge(growth):
    value = float(to_number(growth))
    sign = "+" if value >= 0 else ""
    return {
        "label": f"{sign}{value:.1f}%",
        "css": "text-success" if value >= 0 else "text-danger",
    }


def trend(current_value, previous_value):
    """Change against the previous period, shaped like ``growth_badge``."""
    current = to_number(current_value)
    previous = to_number(previous_value)
    if current == previous:
        return {"label": "No change vs prev", "css": "text-muted"}
    if previous == 0:
        badge = {"label": f"{current:+.2f}", "css": "text-success" if current > 0 else "text-danger"}
    else:
        badge = growth_badge((current - previous) / previous * 100)
    badge["label"] += " vs prev"
    return badge


def date_range(days, today=None):
    today = today or date.today()
    return (today - timedelta(days=days)).isoformat(), today.isoformat()


def analytics_charts(analytics):
    analytics = analytics or {}
    daily = analytics.get("dailyTrend") or []
    by_station = analytics.get("salesByStation") or []
    by_fuel = analytics.get("salesByFuelType") or []

    return {
        "trend_labels": json.dumps([row.get("date") for row in daily]),
        "trend_sales": json.dumps([float(to_number(row.get("sales"))) for row in daily]),
        "trend_quantity": json.dumps([float(to_number(row.get("quantity"))) for row in daily]),
        "station_labels": json.dumps([row.get("stationName") for row in by_station]),
        "station_sales": json.dumps([float(to_number(row.get("sales"))) for row in by_station]),
        "fuel_labels": json.dumps([row.get("fuelType") for row in by_fuel]),
        "fuel_sales": json.dumps([float(to_number(row.get("sales"))) for row in by_fuel]),
    }
