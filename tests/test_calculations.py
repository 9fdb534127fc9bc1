from decimal import Decimal

import pytest

from fuelsync_app import calculations
from fuelsync_app.exceptions import ValidationError

PUMPS = [
    {
        "id": "p-1",
        "pumpNumber": 1,
        "nozzles": [
            {"id": "n-1", "nozzleNumber": 1, "fuelType": "petrol", "status": "active", "lastReading": 1000},
            {"id": "n-2", "nozzleNumber": 2, "fuelType": "diesel", "status": "active", "initialReading": 200},
            {"id": "n-3", "nozzleNumber": 3, "fuelType": "cng", "status": "active"},
            {"id": "n-4", "nozzleNumber": 4, "fuelType": "petrol", "status": "maintenance", "lastReading": 10},
        ],
    }
]
PRICES = [
    {"fuelType": "PETROL", "price": "100.50"},
    {"fuel_type": "diesel", "price_per_litre": 90},
]
CREDITORS = [{"id": "cr-1", "name": "Fleet Co", "creditLimit": 5000, "currentBalance": 4800}]


def test_to_number_is_lenient():
    assert calculations.to_number("12.5") == Decimal("12.5")
    assert calculations.to_number(None) == Decimal("0")
    assert calculations.to_number("  ") == Decimal("0")
    assert calculations.to_number("abc") == Decimal("0")
    assert calculations.to_number("nan") == Decimal("0")
    assert calculations.to_number("", default="5") == Decimal("5")


def test_round2_rounds_half_up():
    assert calculations.round2("2.345") == Decimal("2.35")
    assert calculations.round2("2.344") == Decimal("2.34")


def test_compare_value_prefers_latest_recorded_reading():
    nozzle = PUMPS[0]["nozzles"][0]
    assert calculations.compare_value(nozzle, {"n-1": "1200.5"}) == Decimal("1200.5")
    assert calculations.compare_value(nozzle, {}) == Decimal("1000")
    assert calculations.compare_value(PUMPS[0]["nozzles"][1]) == Decimal("200")
    assert calculations.compare_value(PUMPS[0]["nozzles"][2]) == Decimal("0")


def test_find_price_matches_either_row_shape_case_insensitively():
    assert calculations.find_price(PRICES, "petrol") == Decimal("100.50")
    assert calculations.find_price(PRICES, "DIESEL") == Decimal("90")
    assert calculations.find_price(PRICES, "cng") is None
    assert calculations.find_price(PRICES, "") is None


def test_nozzle_sale_never_goes_negative():
    sale = calculations.nozzle_sale("1010", "1000", "100")
    assert sale.litres == Decimal("10")
    assert sale.sale_value == Decimal("1000")

    backwards = calculations.nozzle_sale("990", "1000", "100")
    assert backwards.litres == Decimal("0")
    assert backwards.sale_value == Decimal("0")


def test_is_valid_reading_requires_strictly_greater_value():
    assert calculations.is_valid_reading("1000.01", "1000")
    assert not calculations.is_valid_reading("1000", "1000")
    assert not calculations.is_valid_reading("999", "1000")


def test_sale_summary_skips_blank_and_unknown_nozzles():
    summary = calculations.sale_summary(
        {"n-1": "1010", "n-2": "210", "n-3": "", "ghost": "50"}, PUMPS, PRICES
    )

    assert summary.total_litres == Decimal("20")
    assert summary.total_sale_value == Decimal("1005.00") + Decimal("900")
    assert set(summary.by_fuel_type) == {"petrol", "diesel"}
    assert summary.by_fuel_type["diesel"]["litres"] == Decimal("10")
    assert [line.nozzle_id for line in summary.lines] == ["n-1", "n-2"]
    assert all(line.valid for line in summary.lines)


def test_auto_cash_covers_remainder_and_floors_at_zero():
    credits = [{"creditorId": "cr-1", "amount": "300"}]
    assert calculations.auto_cash("1000", "200", credits) == Decimal("500")
    assert calculations.auto_cash("100", "200", credits) == Decimal("0")


def test_validate_readings_reports_each_problem():
    errors = calculations.validate_readings(
        {"n-1": "999", "n-3": "5", "n-4": "20", "ghost": "1", "n-2": "abc"}, PUMPS, PRICES
    )

    assert "Nozzle 1: incorrect reading (must be above 1000.00)." in errors
    assert "Nozzle 3: price not set for cng." in errors
    assert "Nozzle 4 is not active." in errors
    assert "Unknown nozzle ghost." in errors
    assert "Nozzle 2: reading must be a number." in errors


def test_validate_readings_requires_at_least_one_value():
    assert calculations.validate_readings({"n-1": " "}, PUMPS, PRICES) == [
        "Enter at least one closing reading."
    ]


def test_validate_payment_accepts_exact_match_within_tolerance():
    credits = [{"creditorId": "cr-1", "amount": "100"}]
    assert calculations.validate_payment("1000", "700", "200.005", credits, CREDITORS) == []


def test_validate_payment_rejects_overpayment_and_shortfall():
    over = calculations.validate_payment("1000", "900", "200", [])
    assert over == ["Total payment (₹1100.00) cannot exceed sale value (₹1000.00)"]

    short = calculations.validate_payment("1000", "500", "200", [])
    assert short == ["Total payment (₹700.00) must match sale value (₹1000.00)"]


def test_validate_payment_requires_creditor_and_respects_limit():
    missing = calculations.validate_payment("1000", "700", "0", [{"creditorId": "", "amount": "300"}])
    assert "Please allocate credit to at least one creditor" in missing

    over_limit = calculations.validate_payment(
        "1000", "700", "0", [{"creditorId": "cr-1", "amount": "300"}], CREDITORS
    )
    assert over_limit == ["Fleet Co: credit exceeds available limit (₹200.00)"]


def test_validate_payment_requires_creditor_on_every_allocation():
    credits = [{"creditorId": "cr-1", "amount": "100"}, {"creditorId": "", "amount": "50"}]

    errors = calculations.validate_payment("150", "0", "0", credits)

    assert errors == ["Please select a creditor for each credit allocation"]


def test_validate_payment_ignores_empty_rows_without_creditor():
    credits = [{"creditorId": "cr-1", "amount": "100"}, {"creditorId": "", "amount": ""}]
    assert calculations.validate_payment("100", "0", "0", credits) == []


def test_validate_payment_sums_rows_for_the_same_creditor():
    creditors = [{"id": "cr-1", "name": "Fleet Co", "creditLimit": 5000, "currentBalance": 1000}]
    credits = [{"creditorId": "cr-1", "amount": "3000"}, {"creditorId": "cr-1", "amount": "3000"}]

    errors = calculations.validate_payment("6000", "0", "0", credits, creditors)

    assert errors == ["Fleet Co: credit exceeds available limit (₹4000.00)"]


def test_out_of_range_numbers_are_rejected():
    assert calculations.is_representable("1000.5")
    assert not calculations.is_representable("1e400")
    assert not calculations.is_representable("nan")

    errors = calculations.validate_readings({"n-1": "1e400"}, PUMPS, PRICES)
    assert errors == ["Nozzle 1: reading is out of range."]

    assert "Payment amounts are out of range." in calculations.validate_payment("1000", "1e400", "0", [])


def test_distribute_payment_sums_exactly_to_entered_amounts():
    credits = [{"creditorId": "cr-1", "amount": "100"}, {"creditorId": "cr-2", "amount": "0"}]
    splits = calculations.distribute_payment(["333.33", "333.33", "333.34"], "500", "400", credits)

    assert len(splits) == 3
    assert sum(split["cash"] for split in splits) == Decimal("500")
    assert sum(split["online"] for split in splits) == Decimal("400")
    credit_parts = [credit for split in splits for credit in split["credits"]]
    assert {credit["creditorId"] for credit in credit_parts} == {"cr-1"}
    assert sum(credit["amount"] for credit in credit_parts) == Decimal("100")
    assert splits[0]["cash"] == Decimal("166.67")


def test_distribute_payment_with_zero_sale_gives_everything_to_last():
    splits = calculations.distribute_payment(["0", "0"], "10", "0", [])
    assert [split["cash"] for split in splits] == [Decimal("0"), Decimal("10")]


def test_build_quick_entry_payload_shape():
    payload = calculations.build_quick_entry_payload(
        "st-1",
        "2024-05-01",
        {"n-1": "1010", "n-2": ""},
        PRICES,
        Decimal("500"),
        Decimal("200"),
        [{"creditorId": "cr-1", "amount": Decimal("300")}, {"creditorId": "cr-2", "amount": Decimal("0")}],
    )

    assert payload["stationId"] == "st-1"
    assert payload["transactionDate"] == "2024-05-01"
    assert payload["readings"] == [
        {"nozzleId": "n-1", "readingValue": 1010.0, "readingDate": "2024-05-01", "notes": ""}
    ]
    assert payload["paymentBreakdown"] == {"cash": 500.0, "online": 200.0, "credit": 300.0}
    assert payload["creditAllocations"] == [{"creditorId": "cr-1", "amount": 300.0}]
    assert payload["stationPrices"] == [
        {"fuelType": "PETROL", "price": 100.5},
        {"fuelType": "diesel", "price": 90.0},
    ]


def test_build_quick_entry_payload_omits_allocations_without_credit():
    payload = calculations.build_quick_entry_payload(
        "st-1", "2024-05-01", {"n-1": "1010"}, PRICES, "1000", "0", []
    )
    assert payload["creditAllocations"] == []


def test_check_quick_entry_collects_reading_and_payment_errors():
    with pytest.raises(ValidationError) as excinfo:
        calculations.check_quick_entry({"n-1": "1010"}, PUMPS, PRICES, "0", "0", [])

    assert excinfo.value.messages == ["Total payment (₹0.00) must match sale value (₹1005.00)"]


def test_check_quick_entry_returns_summary_when_valid():
    summary = calculations.check_quick_entry({"n-1": "1010"}, PUMPS, PRICES, "1005", "0", [])
    assert summary.total_sale_value == Decimal("1005.00")


def test_selected_totals_only_counts_selected_readings():
    readings = [
        {"id": "r-1", "cashAmount": 500, "onlineAmount": 200, "creditAmount": 300, "litresSold": 10, "saleValue": 1000},
        {"id": "r-2", "cashAmount": 400, "onlineAmount": 100, "creditAmount": 0, "litresSold": 5, "saleValue": 500},
    ]

    totals = calculations.selected_totals(readings, ["r-2"])
    assert totals == {
        "cash": Decimal("400"),
        "online": Decimal("100"),
        "credit": Decimal("0"),
        "litres": Decimal("5"),
        "value": Decimal("500"),
    }
    assert calculations.selected_totals(readings, [])["value"] == Decimal("0")


def test_cash_variance_sign_and_match_tolerance():
    assert calculations.cash_variance("900", "880") == Decimal("20")
    assert calculations.cash_variance("900", "910") == Decimal("-10")
    assert calculations.is_cash_match("900", "899.5")
    assert not calculations.is_cash_match("900", "899")


def test_build_settlement_payload_never_sends_variance():
    totals = {"cash": Decimal("900"), "online": Decimal("300"), "credit": Decimal("300")}
    payload = calculations.build_settlement_payload(
        "st-1", "2024-05-01", ["r-1", "r-2"], totals, "880", "300", "300", "short by 20"
    )

    assert "variance" not in payload
    assert payload == {
        "date": "2024-05-01",
        "stationId": "st-1",
        "expectedCash": 900.0,
        "actualCash": 880.0,
        "online": 300.0,
        "credit": 300.0,
        "notes": "short by 20",
        "readingIds": ["r-1", "r-2"],
        "isFinal": True,
    }


def test_check_settlement_requires_sales_and_selection():
    with pytest.raises(ValidationError, match="No sales data available"):
        calculations.check_settlement(None, ["r-1"])
    with pytest.raises(ValidationError, match="at least one employee reading"):
        calculations.check_settlement({"totalSaleValue": 10}, [])
    calculations.check_settlement({"totalSaleValue": 10}, ["r-1"])
