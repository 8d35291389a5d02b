"""Tests for movement and report-total pure functions.

Covers standard and RAM-clear movement, meter validation, the floored
partner-profit split and the carried balance.
"""

import os
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-unit-tests-only")

from collectdesk.services.movement_math import (
    RAM_CLEAR_METERS_WARNING,
    compute_balance,
    compute_movement,
    compute_report_totals,
    movement_matches,
    sum_sas_movement,
    validate_meter_entry,
)


class TestComputeMovement:
    """Movement of a single machine between two collections."""

    def test_standard_movement(self):
        result = compute_movement(1500, 600, 1000, 400)
        assert result == {"drop": 500, "cancelled_credits": 200, "gross": 300}

    def test_ram_clear_with_last_meters(self):
        # 100 counted before the clear, 200 after
        result = compute_movement(200, 50, 1000, 400, True, 1100, 450)
        assert result["drop"] == 300
        assert result["cancelled_credits"] == 100
        assert result["gross"] == 200

    def test_ram_clear_without_last_meters_uses_current(self):
        result = compute_movement(200, 50, 1000, 400, True)
        assert result == {"drop": 200, "cancelled_credits": 50, "gross": 150}

    def test_ram_clear_with_only_one_last_meter_uses_current(self):
        result = compute_movement(200, 50, 1000, 400, True, 1100, None)
        assert result == {"drop": 200, "cancelled_credits": 50, "gross": 150}

    def test_missing_previous_counts_as_zero(self):
        result = compute_movement(100, 40, None, None)
        assert result == {"drop": 100, "cancelled_credits": 40, "gross": 60}

    def test_rounded_to_two_decimals(self):
        result = compute_movement(100.25, 40.1, 50, 20)
        assert result["drop"] == 50.25
        assert result["cancelled_credits"] == 20.1
        assert result["gross"] == 30.15

    def test_lower_meters_give_negative_movement(self):
        result = compute_movement(900, 300, 1000, 400)
        assert result["drop"] == -100
        assert result["cancelled_credits"] == -100
        assert result["gross"] == 0

    def test_ram_clear_meters_ignored_without_ram_clear(self):
        result = compute_movement(1500, 600, 1000, 400, False, 1100, 450)
        assert result["drop"] == 500


class TestValidateMeterEntry:

    def test_valid_entry(self):
        result = validate_meter_entry(1500, 600, 1000, 400)
        assert result == {"is_valid": True, "errors": [], "warnings": []}

    def test_missing_meters_is_error(self):
        result = validate_meter_entry(None, 600, 1000, 400)
        assert result["is_valid"] is False
        assert result["errors"] == ["Meters in and meters out are required"]

    def test_negative_meters_are_errors(self):
        result = validate_meter_entry(-1, -2, 0, 0)
        assert result["is_valid"] is False
        assert "Meters in cannot be negative" in result["errors"]
        assert "Meters out cannot be negative" in result["errors"]

    def test_lower_than_previous_is_warning(self):
        result = validate_meter_entry(900, 300, 1000, 400)
        assert result["is_valid"] is True
        assert result["errors"] == []
        assert len(result["warnings"]) == 2
        assert "lower than previous meters in" in result["warnings"][0]
        assert "Was there a RAM clear?" in result["warnings"][0]
        assert "lower than previous meters out" in result["warnings"][1]

    def test_equal_to_previous_is_valid(self):
        result = validate_meter_entry(1000, 400, 1000, 400)
        assert result["warnings"] == []

    def test_ram_clear_without_last_meters_warns(self):
        result = validate_meter_entry(200, 50, 1000, 400, True)
        assert result["is_valid"] is True
        assert result["warnings"] == [RAM_CLEAR_METERS_WARNING]

    def test_ram_clear_does_not_warn_about_lower_meters(self):
        result = validate_meter_entry(200, 50, 1000, 400, True, 1100, 450)
        assert result == {"is_valid": True, "errors": [], "warnings": []}

    def test_ram_clear_meters_below_previous_is_error(self):
        result = validate_meter_entry(200, 50, 1000, 400, True, 900, 450)
        assert result["is_valid"] is False
        assert len(result["errors"]) == 1
        assert "RAM clear meters in" in result["errors"][0]

    def test_negative_ram_clear_meters_is_error(self):
        result = validate_meter_entry(200, 50, 0, 0, True, -5, 10)
        assert result["is_valid"] is False
        assert "RAM clear meters in cannot be negative" in result["errors"]


class TestComputeReportTotals:
    """Partner profit is floored before taxes are subtracted."""

    ENTRIES = [
        {"drop": 500, "cancelled_credits": 200, "gross": 300},
        {"drop": 300, "cancelled_credits": 100, "gross": 200},
    ]

    def test_full_split(self):
        result = compute_report_totals(
            self.ENTRIES, taxes=10, variance=20, advance=30,
            previous_balance=100, profit_share=50,
        )
        assert result["drop"] == 800
        assert result["cancelled_credits"] == 300
        assert result["gross"] == 500
        # floor((500 - 20 - 30) * 0.5) - 10
        assert result["partner_profit"] == 215
        # 450 - 215 + 100
        assert result["amount_to_collect"] == 335

    def test_partner_profit_is_floored(self):
        entries = [{"drop": 301, "cancelled_credits": 0, "gross": 301}]
        result = compute_report_totals(entries, profit_share=50)
        assert result["partner_profit"] == 150
        assert result["amount_to_collect"] == 151

    def test_negative_net_floors_towards_minus_infinity(self):
        entries = [{"drop": 0, "cancelled_credits": 101, "gross": -101}]
        result = compute_report_totals(entries, profit_share=50)
        assert result["partner_profit"] == -51
        assert result["amount_to_collect"] == -50

    def test_default_profit_share(self):
        entries = [{"drop": 100, "cancelled_credits": 0, "gross": 100}]
        result = compute_report_totals(entries)
        assert result["partner_profit"] == 50
        assert result["amount_to_collect"] == 50

    def test_zero_profit_share_keeps_taxes(self):
        entries = [{"drop": 100, "cancelled_credits": 0, "gross": 100}]
        result = compute_report_totals(entries, taxes=5, profit_share=0)
        assert result["partner_profit"] == -5
        assert result["amount_to_collect"] == 105

    def test_none_inputs_count_as_zero(self):
        entries = [{"drop": 100, "cancelled_credits": 0, "gross": 100}]
        result = compute_report_totals(
            entries, taxes=None, variance=None, advance=None,
            previous_balance=None, profit_share=40,
        )
        assert result["partner_profit"] == 40
        assert result["amount_to_collect"] == 60

    def test_no_entries(self):
        result = compute_report_totals([], previous_balance=75, profit_share=50)
        assert result["gross"] == 0
        assert result["partner_profit"] == 0
        assert result["amount_to_collect"] == 75


class TestComputeBalance:

    def test_partial_collection_carries_balance(self):
        result = compute_balance(335, 300)
        assert result == {
            "current_balance": 35,
            "amount_uncollected": 35,
            "balance_correction": 300,
        }

    def test_overpayment_leaves_nothing_uncollected(self):
        result = compute_balance(100, 150, 10)
        assert result["current_balance"] == -50
        assert result["amount_uncollected"] == 0
        assert result["balance_correction"] == 160

    def test_nothing_collected(self):
        result = compute_balance(80, None)
        assert result["current_balance"] == 80
        assert result["balance_correction"] == 0


class TestSumSasMovement:

    def test_sums_readings(self):
        readings = [
            {"movement": {"drop": 100, "total_cancelled_credits": 30, "games_played": 12, "jackpot": 0}},
            {"movement": {"drop": 50, "total_cancelled_credits": 10, "games_played": 5, "jackpot": 20}},
        ]
        result = sum_sas_movement(readings)
        assert result == {
            "drop": 150,
            "total_cancelled_credits": 40,
            "gross": 110,
            "games_played": 17,
            "jackpot": 20,
        }

    def test_no_readings_is_zero(self):
        result = sum_sas_movement([])
        assert result["gross"] == 0
        assert result["games_played"] == 0

    def test_reading_without_movement(self):
        result = sum_sas_movement([{"machine_id": "m1"}])
        assert result["drop"] == 0


class TestMovementMatches:

    def test_within_tolerance(self):
        stored = {"drop": 500, "cancelled_credits": 200, "gross": 300.005}
        expected = {"drop": 500, "cancelled_credits": 200, "gross": 300}
        assert movement_matches(stored, expected) is True

    def test_outside_tolerance(self):
        stored = {"drop": 500, "cancelled_credits": 200, "gross": 300.5}
        expected = {"drop": 500, "cancelled_credits": 200, "gross": 300}
        assert movement_matches(stored, expected) is False

    def test_explicit_tolerance(self):
        stored = {"drop": 500, "cancelled_credits": 200, "gross": 300.5}
        expected = {"drop": 500, "cancelled_credits": 200, "gross": 300}
        assert movement_matches(stored, expected, tolerance=1) is True
