"""Tests for repayment terms, money rounding and lateness."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from peerlend.services.payment_calculator import (
    as_utc,
    calculate_interest,
    calculate_lateness,
    calculate_terms,
    to_money,
)

ACCEPTED = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestToMoney:

    def test_rounds_half_up(self):
        assert to_money(Decimal("0.005")) == Decimal("0.01")
        assert to_money(Decimal("2.675")) == Decimal("2.68")

    def test_float_input_goes_through_str(self):
        assert to_money(1000.1) == Decimal("1000.10")

    def test_int_input(self):
        assert to_money(500) == Decimal("500.00")


class TestTerms:

    def test_reference_example(self):
        terms = calculate_terms(Decimal("10000"), Decimal("12"), 30, ACCEPTED)
        assert terms.interest == Decimal("98.63")
        assert terms.total_repayable == Decimal("10098.63")

    def test_interest_is_unrounded(self):
        interest = calculate_interest(10000, 12, 30)
        assert Decimal("98.630") < interest < Decimal("98.631")

    def test_total_rounded_once_from_unrounded_interest(self):
        # 1000 * 10 * 45 / 36500 = 12.3287...
        terms = calculate_terms(Decimal("1000"), Decimal("10"), 45, ACCEPTED)
        assert terms.total_repayable == Decimal("1012.33")

    def test_zero_rate(self):
        terms = calculate_terms(Decimal("5000"), Decimal("0"), 90, ACCEPTED)
        assert terms.interest == Decimal("0.00")
        assert terms.total_repayable == Decimal("5000.00")

    def test_due_date_is_duration_days_after_acceptance(self):
        terms = calculate_terms(Decimal("1000"), Decimal("10"), 30, ACCEPTED)
        assert terms.due_date == ACCEPTED + timedelta(days=30)


class TestLateness:

    def test_on_due_date_is_not_late(self):
        assert calculate_lateness(ACCEPTED, ACCEPTED) == (False, 0)

    def test_early_is_not_late(self):
        assert calculate_lateness(ACCEPTED - timedelta(days=3), ACCEPTED) == (False, 0)

    def test_any_fraction_of_a_day_counts(self):
        assert calculate_lateness(ACCEPTED + timedelta(seconds=1), ACCEPTED) == (True, 1)

    def test_partial_days_round_up(self):
        assert calculate_lateness(ACCEPTED + timedelta(hours=25), ACCEPTED) == (True, 2)

    def test_exact_days(self):
        assert calculate_lateness(ACCEPTED + timedelta(days=4), ACCEPTED) == (True, 4)

    def test_naive_due_date_treated_as_utc(self):
        naive_due = ACCEPTED.replace(tzinfo=None)
        assert calculate_lateness(ACCEPTED + timedelta(days=1), naive_due) == (True, 1)


def test_as_utc_keeps_aware_values():
    assert as_utc(ACCEPTED) is ACCEPTED
