"""Installment arithmetic for credit accounts"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from crediario.time_utils import to_utc_z


FREQUENCY_WEEKLY = "WEEKLY"
FREQUENCY_MONTHLY = "MONTHLY"

VALID_FREQUENCIES = [FREQUENCY_WEEKLY, FREQUENCY_MONTHLY]

FREQUENCY_INTERVAL_DAYS = {
    FREQUENCY_WEEKLY: 7,
    FREQUENCY_MONTHLY: 30,
}


@dataclass(frozen=True)
class Installment:
    number: int
    due_date: datetime | None
    amount_cents: int
    paid: bool = False

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "due_date": to_utc_z(self.due_date),
            "amount_cents": self.amount_cents,
            "paid": self.paid,
        }


def interval_for(frequency: str) -> timedelta:
    try:
        return timedelta(days=FREQUENCY_INTERVAL_DAYS[frequency])
    except KeyError:
        raise ValueError(f"Invalid payment frequency: {frequency}. Must be one of {VALID_FREQUENCIES}")


def installment_value_cents(total_cents: int, installments: int) -> int:
    """
    Regular installment value: total // installments (truncation).

    The final installment absorbs the remainder, see split_installments().
    """
    if installments < 1:
        raise ValueError("installments must be >= 1")
    return total_cents // installments


def split_installments(total_cents: int, installments: int) -> list[int]:
    """
    Split a total into installment amounts that sum to it exactly.

    Example:
        10003 cents / 4 -> [2500, 2500, 2500, 2503]
    """
    base = installment_value_cents(total_cents, installments)
    remainder = total_cents - base * installments
    amounts = [base] * installments
    amounts[-1] += remainder
    return amounts


def default_first_due_date(now: datetime, frequency: str) -> datetime:
    """First due date when the clerk leaves it blank: one period from now."""
    return now + interval_for(frequency)


def advance_due_date(current: datetime | None, frequency: str, now: datetime, periods: int = 1) -> datetime:
    """Move a due date forward by whole periods (installments newly covered)."""
    base = current if current is not None else now
    return base + interval_for(frequency) * periods


def installments_covered(total_cents: int, installments: int, paid_cents: int) -> int:
    """How many installments, in order, the paid amount fully covers."""
    covered = 0
    running = 0
    for amount in split_installments(total_cents, installments):
        running += amount
        if running > paid_cents:
            break
        covered += 1
    return covered


def build_installment_schedule(
    total_cents: int,
    installments: int,
    next_due_date: datetime | None,
    frequency: str,
    *,
    paid_cents: int = 0,
) -> list[Installment]:
    """
    Full repayment schedule for an account.

    Installments already covered by paid_cents are marked paid and carry no
    due date. The first unpaid installment is due on next_due_date and the
    rest follow one period apart; when no date is known they are left empty.
    """
    step = interval_for(frequency)
    covered = installments_covered(total_cents, installments, paid_cents)

    schedule = []
    for i, amount in enumerate(split_installments(total_cents, installments)):
        number = i + 1
        if number <= covered:
            schedule.append(Installment(number=number, due_date=None, amount_cents=amount, paid=True))
            continue
        due = next_due_date + step * (number - covered - 1) if next_due_date is not None else None
        schedule.append(Installment(number=number, due_date=due, amount_cents=amount))
    return schedule
