"""Reading -> sale -> payment arithmetic for quick entry and daily settlement.

Opening reading is the last recorded meter value of a nozzle, closing reading
is what the attendant types in now. Litres sold is the difference, sale value
is litres times the station price for the nozzle's fuel type. The backend
recomputes all of this; these helpers drive the form preview and the checks
that run before anything is submitted.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .exceptions import ValidationError

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0")
PAYMENT_TOLERANCE = Decimal("0.01")
CASH_MATCH_TOLERANCE = Decimal("1")
ACTIVE_STATUS = "active"


def to_number(value, default="0"):
    if value is None:
        return Decimal(default)
    if isinstance(value, Decimal):
        return value
    raw_value = str(value).strip()
    if raw_value == "":
        return Decimal(default)
    try:
        number = Decimal(raw_value)
    except InvalidOperation:
        return Decimal(default)
    if not number.is_finite():
        return Decimal(default)
    return number


def is_representable(value):
    """False for values that are not finite or that overflow a JSON float."""
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError, OverflowError):
        return False


def round2(value):
    return to_number(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def iter_nozzles(pumps):
    for pump in pumps or []:
        for nozzle in pump.get("nozzles") or []:
            yield nozzle


def compare_value(nozzle, last_readings=None):
    """Opening reading for ``nozzle``.

    Latest recorded reading first, then the nozzle's own ``lastReading``,
    then its ``initialReading``, then 0.
    """
    nozzle_id = str(nozzle.get("id"))
    candidates = []
    if last_readings:
        candidates.append(last_readings.get(nozzle_id))
    candidates.append(nozzle.get("lastReading"))
    candidates.append(nozzle.get("initialReading"))

    for candidate in candidates:
        if candidate is None or str(candidate).strip() == "":
            continue
        try:
            number = Decimal(str(candidate).strip())
        except InvalidOperation:
            continue
        if number.is_finite():
            return number
    return ZERO


def find_price(fuel_prices, fuel_type):
    wanted = (fuel_type or "").strip().upper()
    if not wanted:
        return None
    for row in fuel_prices or []:
        row_type = row.get("fuelType") or row.get("fuel_type") or ""
        if row_type.strip().upper() != wanted:
            continue
        raw_price = row.get("price")
        if raw_price is None:
            raw_price = row.get("price_per_litre")
        return to_number(raw_price)
    return None


@dataclass
class NozzleSale:
    litres: Decimal
    sale_value: Decimal


def nozzle_sale(entered, opening, price):
    litres = max(ZERO, to_number(entered) - to_number(opening))
    return NozzleSale(litres=litres, sale_value=litres * to_number(price))


def is_valid_reading(entered, opening):
    return to_number(entered) > to_number(opening)


@dataclass
class SaleLine:
    nozzle_id: str
    nozzle_number: object
    fuel_type: str
    opening: Decimal
    closing: Decimal
    price: Decimal
    litres: Decimal
    sale_value: Decimal
    valid: bool


@dataclass
class SaleSummary:
    total_litres: Decimal = ZERO
    total_sale_value: Decimal = ZERO
    by_fuel_type: dict = field(default_factory=dict)
    lines: list = field(default_factory=list)


def sale_summary(readings, pumps, fuel_prices, last_readings=None):
    """Totals over the readings typed in so far.

    ``readings`` maps nozzle id to the raw closing value from the form.
    Blank values and ids that are not nozzles of ``pumps`` are skipped.
    Readings at or below the opening value count as zero litres.
    """
    nozzles = {str(nozzle.get("id")): nozzle for nozzle in iter_nozzles(pumps)}
    summary = SaleSummary()

    for nozzle_id, raw_value in (readings or {}).items():
        nozzle = nozzles.get(str(nozzle_id))
        if nozzle is None:
            continue
        if raw_value is None or str(raw_value).strip() == "":
            continue

        closing = to_number(raw_value)
        opening = compare_value(nozzle, last_readings)
        price = find_price(fuel_prices, nozzle.get("fuelType"))
        sale = nozzle_sale(closing, opening, price or ZERO)
        fuel_type = nozzle.get("fuelType") or "unknown"

        summary.total_litres += sale.litres
        summary.total_sale_value += sale.sale_value
        bucket = summary.by_fuel_type.setdefault(fuel_type, {"litres": ZERO, "value": ZERO})
        bucket["litres"] += sale.litres
        bucket["value"] += sale.sale_value

        summary.lines.append(
            SaleLine(
                nozzle_id=str(nozzle_id),
                nozzle_number=nozzle.get("nozzleNumber"),
                fuel_type=fuel_type,
                opening=opening,
                closing=closing,
                price=price if price is not None else ZERO,
                litres=sale.litres,
                sale_value=sale.sale_value,
                valid=is_valid_reading(closing, opening),
            )
        )

    return summary


def credit_total(credits):
    return sum((to_number(credit.get("amount")) for credit in credits or []), ZERO)


def auto_cash(total, online, credits):
    """Cash fills whatever online and credit leave uncovered, never below 0."""
    return max(ZERO, to_number(total) - to_number(online) - credit_total(credits))


def validate_readings(readings, pumps, fuel_prices, last_readings=None):
    errors = []
    nozzles = {str(nozzle.get("id")): nozzle for nozzle in iter_nozzles(pumps)}
    entered = {
        nozzle_id: value
        for nozzle_id, value in (readings or {}).items()
        if value is not None and str(value).strip() != ""
    }

    if not entered:
        errors.append("Enter at least one closing reading.")
        return errors

    for nozzle_id, raw_value in entered.items():
        nozzle = nozzles.get(str(nozzle_id))
        if nozzle is None:
            errors.append(f"Unknown nozzle {nozzle_id}.")
            continue

        label = f"Nozzle {nozzle.get('nozzleNumber', nozzle_id)}"
        if (nozzle.get("status") or ACTIVE_STATUS) != ACTIVE_STATUS:
            errors.append(f"{label} is not active.")
            continue
        if find_price(fuel_prices, nozzle.get("fuelType")) is None:
            errors.append(f"{label}: price not set for {nozzle.get('fuelType')}.")
            continue

        try:
            closing = Decimal(str(raw_value).strip())
        except InvalidOperation:
            errors.append(f"{label}: reading must be a number.")
            continue
        if not is_representable(closing):
            errors.append(f"{label}: reading is out of range.")
            continue
        opening = compare_value(nozzle, last_readings)
        if not is_valid_reading(closing, opening):
            errors.append(f"{label}: incorrect reading (must be above {opening:.2f}).")

    return errors


def validate_payment(total, cash, online, credits, creditors=None, currency="₹"):
    total = to_number(total)
    cash = to_number(cash)
    online = to_number(online)
    credit = credit_total(credits)
    payment = cash + online + credit
    errors = []

    if cash < 0 or online < 0 or any(to_number(c.get("amount")) < 0 for c in credits or []):
        errors.append("Payment amounts cannot be negative.")
    if not all(is_representable(amount) for amount in (cash, online, credit)):
        errors.append("Payment amounts are out of range.")

    if payment > total + PAYMENT_TOLERANCE:
        errors.append(
            f"Total payment ({currency}{payment:.2f}) cannot exceed sale value ({currency}{total:.2f})"
        )
    elif abs(payment - total) > PAYMENT_TOLERANCE:
        errors.append(
            f"Total payment ({currency}{payment:.2f}) must match sale value ({currency}{total:.2f})"
        )

    allocations = [c for c in credits or [] if to_number(c.get("amount")) > 0]
    if credit > 0 and not any(c.get("creditorId") for c in allocations):
        errors.append("Please allocate credit to at least one creditor")
    elif any(not c.get("creditorId") for c in allocations):
        errors.append("Please select a creditor for each credit allocation")

    # several rows may name the same creditor; the limit applies to their sum
    per_creditor = {}
    for allocation in allocations:
        creditor_id = str(allocation.get("creditorId") or "")
        if creditor_id:
            per_creditor[creditor_id] = per_creditor.get(creditor_id, ZERO) + to_number(allocation.get("amount"))

    creditors_by_id = {str(c.get("id")): c for c in creditors or []}
    for creditor_id, amount in per_creditor.items():
        creditor = creditors_by_id.get(creditor_id)
        if creditor is None:
            continue
        limit = to_number(creditor.get("creditLimit"))
        if limit <= 0:
            continue
        balance = to_number(creditor.get("currentBalance", creditor.get("outstanding")))
        available = limit - balance
        if amount > available:
            errors.append(
                f"{creditor.get('name', 'Creditor')}: credit exceeds available limit ({currency}{available:.2f})"
            )

    return errors


def distribute_payment(sale_values, cash, online, credits):
    """Split cash, online and each credit allocation across readings.

    Each reading gets its share proportional to its sale value, rounded to
    2 dp. The last reading takes the remainder, so every column sums to the
    entered amount exactly.
    """
    sale_values = [to_number(value) for value in sale_values]
    total_sale = sum(sale_values, ZERO)
    cash = to_number(cash)
    online = to_number(online)
    credits = [c for c in credits or [] if to_number(c.get("amount")) > 0]

    splits = []
    allocated_cash = ZERO
    allocated_online = ZERO
    allocated_credit = {index: ZERO for index in range(len(credits))}

    for position, sale_value in enumerate(sale_values):
        is_last = position == len(sale_values) - 1
        share = sale_value / total_sale if total_sale > 0 else ZERO

        if is_last:
            cash_amount = round2(cash - allocated_cash)
            online_amount = round2(online - allocated_online)
        else:
            cash_amount = round2(cash * share)
            online_amount = round2(online * share)
        allocated_cash += cash_amount
        allocated_online += online_amount

        credit_amounts = []
        for index, allocation in enumerate(credits):
            amount = to_number(allocation.get("amount"))
            if is_last:
                part = round2(amount - allocated_credit[index])
            else:
                part = round2(amount * share)
            allocated_credit[index] += part
            if part > 0:
                credit_amounts.append({"creditorId": allocation.get("creditorId"), "amount": part})

        splits.append({"cash": cash_amount, "online": online_amount, "credits": credit_amounts})

    return splits


def build_quick_entry_payload(
    station_id, reading_date, readings, fuel_prices, cash, online, credits, notes=""
):
    entered = [
        (nozzle_id, value)
        for nozzle_id, value in (readings or {}).items()
        if value is not None and str(value).strip() != ""
    ]
    credit = credit_total(credits)

    return {
        "stationId": station_id,
        "transactionDate": reading_date,
        "readings": [
            {
                "nozzleId": nozzle_id,
                "readingValue": float(to_number(value)),
                "readingDate": reading_date,
                "notes": notes,
            }
            for nozzle_id, value in entered
        ],
        "paymentBreakdown": {
            "cash": float(round2(cash)),
            "online": float(round2(online)),
            "credit": float(round2(credit)),
        },
        "creditAllocations": [
            {"creditorId": c.get("creditorId"), "amount": float(round2(c.get("amount")))}
            for c in credits or []
            if to_number(c.get("amount")) > 0
        ]
        if credit > 0
        else [],
        "stationPrices": [
            {
                "fuelType": row.get("fuelType") or row.get("fuel_type"),
                "price": float(to_number(row.get("price", row.get("price_per_litre")))),
            }
            for row in fuel_prices or []
        ],
    }


def selected_totals(readings, selected_ids):
    totals = {"cash": ZERO, "online": ZERO, "credit": ZERO, "litres": ZERO, "value": ZERO}
    wanted = {str(reading_id) for reading_id in selected_ids or []}
    if not wanted:
        return totals

    for reading in readings or []:
        if str(reading.get("id")) not in wanted:
            continue
        totals["cash"] += to_number(reading.get("cashAmount"))
        totals["online"] += to_number(reading.get("onlineAmount"))
        totals["credit"] += to_number(reading.get("creditAmount"))
        totals["litres"] += to_number(reading.get("litresSold"))
        totals["value"] += to_number(reading.get("saleValue"))
    return totals


def cash_variance(expected, actual):
    """Positive means cash is short, negative means extra cash in the drawer."""
    return to_number(expected) - to_number(actual)


def is_cash_match(expected, actual):
    return abs(cash_variance(expected, actual)) < CASH_MATCH_TOLERANCE


def build_settlement_payload(
    station_id, settlement_date, selected_ids, totals, actual_cash, online, credit, notes="", is_final=True
):
    # variance is left out; the backend computes it from expectedCash and actualCash
    return {
        "date": settlement_date,
        "stationId": station_id,
        "expectedCash": float(round2(totals["cash"])),
        "actualCash": float(round2(actual_cash)),
        "online": float(round2(online)),
        "credit": float(round2(credit)),
        "notes": notes,
        "readingIds": list(selected_ids),
        "isFinal": bool(is_final),
    }


def check_quick_entry(
    readings, pumps, fuel_prices, cash, online, credits, creditors=None, last_readings=None, currency="₹"
):
    """Raise ValidationError with every problem found in a quick entry form."""
    summary = sale_summary(readings, pumps, fuel_prices, last_readings)
    errors = validate_readings(readings, pumps, fuel_prices, last_readings)
    errors.extend(
        validate_payment(round2(summary.total_sale_value), cash, online, credits, creditors, currency)
    )
    if errors:
        raise ValidationError(errors)
    return summary


def check_settlement(sales, selected_ids):
    if not sales:
        raise ValidationError("No sales data available")
    if not selected_ids:
        raise ValidationError(
            "Please select at least one employee reading entry to include in this settlement"
        )
