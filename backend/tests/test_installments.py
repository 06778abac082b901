# Overview: Pytest coverage for installment arithmetic.

from datetime import datetime, timedelta

import pytest

from crediario.services.installments import (
    FREQUENCY_MONTHLY,
    FREQUENCY_WEEKLY,
    advance_due_date,
    build_installment_schedule,
    default_first_due_date,
    installment_value_cents,
    installments_covered,
    interval_for,
    split_installments,
)


class TestSplit:
    def test_value_truncates(self):
        assert installment_value_cents(10003, 4) == 2500
        assert installment_value_cents(100, 3) == 33

    def test_last_installment_absorbs_remainder(self):
        assert split_installments(10003, 4) == [2500, 2500, 2500, 2503]
        assert split_installments(100, 3) == [33, 33, 34]

    @pytest.mark.parametrize("total,n", [(1, 1), (99, 7), (123457, 12), (5, 10)])
    def test_split_sums_to_total(self, total, n):
        amounts = split_installments(total, n)
        assert len(amounts) == n
        assert sum(amounts) == total

    def test_zero_installments_rejected(self):
        with pytest.raises(ValueError):
            installment_value_cents(100, 0)


class TestDates:
    def test_intervals(self):
        assert interval_for(FREQUENCY_WEEKLY) == timedelta(days=7)
        assert interval_for(FREQUENCY_MONTHLY) == timedelta(days=30)

    def test_unknown_frequency(self):
        with pytest.raises(ValueError):
            interval_for("DAILY")

    def test_default_first_due_date(self):
        now = datetime(2026, 1, 1)
        assert default_first_due_date(now, FREQUENCY_WEEKLY) == datetime(2026, 1, 8)
        assert default_first_due_date(now, FREQUENCY_MONTHLY) == datetime(2026, 1, 31)

    def test_advance_due_date(self):
        now = datetime(2026, 3, 1)
        assert advance_due_date(datetime(2026, 1, 31), FREQUENCY_MONTHLY, now) == datetime(2026, 3, 2)
        assert advance_due_date(None, FREQUENCY_WEEKLY, now, periods=2) == datetime(2026, 3, 15)


class TestSchedule:
    def test_installments_covered(self):
        # [2500, 2500, 2500, 2503]
        assert installments_covered(10003, 4, 0) == 0
        assert installments_covered(10003, 4, 2499) == 0
        assert installments_covered(10003, 4, 2500) == 1
        assert installments_covered(10003, 4, 7600) == 3
        assert installments_covered(10003, 4, 10003) == 4

    def test_unpaid_schedule(self):
        first = datetime(2026, 2, 1)
        schedule = build_installment_schedule(10003, 4, first, FREQUENCY_WEEKLY)

        assert [s.number for s in schedule] == [1, 2, 3, 4]
        assert [s.due_date for s in schedule] == [
            first,
            first + timedelta(days=7),
            first + timedelta(days=14),
            first + timedelta(days=21),
        ]
        assert sum(s.amount_cents for s in schedule) == 10003
        assert not any(s.paid for s in schedule)

    def test_partially_paid_schedule(self):
        next_due = datetime(2026, 3, 3)
        schedule = build_installment_schedule(9000, 3, next_due, FREQUENCY_MONTHLY, paid_cents=3500)

        assert [s.paid for s in schedule] == [True, False, False]
        assert schedule[0].due_date is None
        assert schedule[1].due_date == next_due
        assert schedule[2].due_date == next_due + timedelta(days=30)

    def test_schedule_to_dict(self):
        schedule = build_installment_schedule(1000, 1, datetime(2026, 2, 1), FREQUENCY_MONTHLY)
        assert schedule[0].to_dict() == {
            "number": 1,
            "due_date": "2026-02-01T00:00:00Z",
            "amount_cents": 1000,
            "paid": False,
        }
