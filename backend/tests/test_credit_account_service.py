# Overview: Pytest coverage for the credit account ledger.

from datetime import timedelta

import pytest

from crediario.errors import (
    AccountNotFound,
    AccountStateError,
    AmountExceedsBalance,
    CustomerNotFound,
    EmptyLineItems,
    IntegrityRepairTriggered,
    InvalidAmount,
    InvalidQuantity,
    ProductNotFound,
)
from crediario.models import CreditAccount
from crediario.services import credit_account_service
from crediario.time_utils import utcnow
from crediario.validation import ValidationError


def _manual_item(amount_cents, name="Item", quantity=1):
    return {"product_name": name, "quantity": quantity, "unit_price_cents": amount_cents}


class TestOpenAccount:
    def test_open_from_catalog_items(self, db_session, customer, product):
        before = utcnow()
        account = credit_account_service.open_account(
            customer.id,
            [{"product_id": product.id, "quantity": 2}, _manual_item(1500, name="Installation")],
            installments=4,
        )

        assert account.account_number == "CR0001"
        assert account.status == credit_account_service.STATUS_ACTIVE
        assert account.total_amount_cents == 11500
        assert account.paid_amount_cents == 0
        assert account.remaining_amount_cents == 11500
        assert account.installment_value_cents == 2875
        assert account.payment_frequency == "MONTHLY"
        assert account.closed_at is None
        assert account.next_payment_date >= before + timedelta(days=30)

        names = [item.product_name for item in account.items]
        assert names == ["Smart TV", "Installation"]
        assert sum(item.line_total_cents for item in account.items) == account.total_amount_cents

    def test_account_numbers_are_sequential(self, db_session, customer, other_customer):
        first = credit_account_service.open_account(customer.id, [_manual_item(100)])
        second = credit_account_service.open_account(other_customer.id, [_manual_item(100)])

        assert first.account_number == "CR0001"
        assert second.account_number == "CR0002"

    def test_weekly_default_due_date(self, db_session, customer):
        before = utcnow()
        account = credit_account_service.open_account(
            customer.id, [_manual_item(700)], installments=7, payment_frequency="WEEKLY"
        )
        assert before + timedelta(days=7) <= account.next_payment_date <= utcnow() + timedelta(days=7)

    def test_explicit_due_date(self, db_session, customer):
        account = credit_account_service.open_account(
            customer.id, [_manual_item(700)], next_payment_date="2026-12-05"
        )
        assert account.to_dict()["next_payment_date"] == "2026-12-05T00:00:00Z"

    def test_empty_line_items(self, db_session, customer):
        with pytest.raises(EmptyLineItems):
            credit_account_service.open_account(customer.id, [])
        assert db_session.query(CreditAccount).count() == 0

    def test_bad_item_quantity(self, db_session, customer):
        with pytest.raises(InvalidQuantity):
            credit_account_service.open_account(customer.id, [_manual_item(100, quantity=0)])

    def test_negative_price(self, db_session, customer):
        with pytest.raises(InvalidAmount):
            credit_account_service.open_account(customer.id, [_manual_item(-1)])

    def test_zero_total_rejected(self, db_session, customer):
        with pytest.raises(InvalidAmount):
            credit_account_service.open_account(customer.id, [_manual_item(0)])

    def test_unknown_customer(self, db_session):
        with pytest.raises(CustomerNotFound):
            credit_account_service.open_account(99999, [_manual_item(100)])

    def test_unknown_product(self, db_session, customer):
        with pytest.raises(ProductNotFound):
            credit_account_service.open_account(customer.id, [{"product_id": 99999, "quantity": 1}])

    def test_terms_validated(self, db_session, customer):
        with pytest.raises(ValidationError):
            credit_account_service.open_account(customer.id, [_manual_item(100)], installments=0)
        with pytest.raises(ValidationError):
            credit_account_service.open_account(customer.id, [_manual_item(100)], installments=25)
        with pytest.raises(ValidationError):
            credit_account_service.open_account(customer.id, [_manual_item(100)], payment_frequency="DAILY")

    def test_item_name_required_without_product(self, db_session, customer):
        with pytest.raises(ValidationError):
            credit_account_service.open_account(customer.id, [{"quantity": 1, "unit_price_cents": 100}])


class TestAddLineItems:
    def test_total_grows_only_by_new_items(self, db_session, customer):
        account = credit_account_service.open_account(customer.id, [_manual_item(1000)], installments=2)

        updated = credit_account_service.add_line_items(account.id, [_manual_item(250, quantity=2)])

        assert updated.total_amount_cents == 1500
        assert updated.remaining_amount_cents == 1500
        assert updated.installment_value_cents == 750
        assert len(updated.items) == 2

    def test_suspended_account_rejects_items(self, db_session, customer):
        account = credit_account_service.open_account(customer.id, [_manual_item(1000)])
        credit_account_service.suspend_account(account.id)

        with pytest.raises(AccountStateError):
            credit_account_service.add_line_items(account.id, [_manual_item(100)])
        assert credit_account_service.get_account(account.id).total_amount_cents == 1000

    def test_unknown_account(self, db_session):
        with pytest.raises(AccountNotFound):
            credit_account_service.add_line_items(99999, [_manual_item(100)])


class TestSetBalance:
    def test_paid_cannot_exceed_total(self, db_session, customer):
        account = credit_account_service.open_account(customer.id, [_manual_item(1000)])
        with pytest.raises(AmountExceedsBalance):
            credit_account_service.set_balance(account, total_cents=1000, paid_cents=1001)

    def test_paid_cannot_decrease(self, db_session, customer):
        account = credit_account_service.open_account(customer.id, [_manual_item(1000)])
        credit_account_service.set_balance(account, total_cents=1000, paid_cents=400)
        with pytest.raises(AccountStateError):
            credit_account_service.set_balance(account, total_cents=1000, paid_cents=300)
        db_session.rollback()

    def test_payoff_transition_sets_closed_at_once(self, db_session, customer):
        account = credit_account_service.open_account(customer.id, [_manual_item(1000)])

        assert credit_account_service.set_balance(account, total_cents=1000, paid_cents=1000) is True
        assert account.status == credit_account_service.STATUS_PAID_OFF
        assert account.remaining_amount_cents == 0
        assert account.closed_at is not None
        assert account.next_payment_date is None

        closed_at = account.closed_at
        assert credit_account_service.set_balance(account, total_cents=1000, paid_cents=1000) is False
        assert account.closed_at == closed_at
        db_session.rollback()

    def test_derive_state(self):
        derive = credit_account_service.derive_state
        assert derive(1000, 400, "ACTIVE") == (600, "ACTIVE")
        assert derive(1000, 400, "SUSPENDED") == (600, "SUSPENDED")
        assert derive(1000, 1000, "ACTIVE") == (0, "PAID_OFF")
        assert derive(1000, 400, "PAID_OFF") == (600, "ACTIVE")
        assert derive(1000, 1200, "ACTIVE") == (0, "PAID_OFF")


class TestFindOrCreateForOrder:
    def test_creates_once_per_order(self, db_session, customer, order):
        account, created = credit_account_service.find_or_create_for_order(
            customer.id, order.total_cents, order.order_number, installments=4
        )
        again, created_again = credit_account_service.find_or_create_for_order(
            customer.id, order.total_cents, order.order_number
        )

        assert created is True
        assert created_again is False
        assert again.id == account.id
        assert account.order_reference == "ORD-0001"
        assert account.total_amount_cents == 20000
        assert account.installment_value_cents == 5000

        [item] = account.items
        assert item.source == credit_account_service.SOURCE_ORDER
        assert item.product_id is None
        assert item.source_reference == "ORD-0001"

    def test_suspended_account_keeps_its_order(self, db_session, customer, order):
        account, _ = credit_account_service.find_or_create_for_order(
            customer.id, order.total_cents, order.order_number
        )
        credit_account_service.suspend_account(account.id)

        again, created = credit_account_service.find_or_create_for_order(
            customer.id, order.total_cents, order.order_number
        )

        assert created is False
        assert again.id == account.id
        assert again.status == credit_account_service.STATUS_SUSPENDED
        assert db_session.query(CreditAccount).count() == 1

    def test_rejects_bad_input(self, db_session, customer):
        with pytest.raises(InvalidAmount):
            credit_account_service.find_or_create_for_order(customer.id, 0, "ORD-X")
        with pytest.raises(ValidationError):
            credit_account_service.find_or_create_for_order(customer.id, 100, "  ")

    def test_find_active_account(self, db_session, customer):
        assert credit_account_service.find_active_account(customer.id) is None
        account = credit_account_service.open_account(customer.id, [_manual_item(100)])
        assert credit_account_service.find_active_account(customer.id).id == account.id


class TestStatusChanges:
    def test_suspend_and_reactivate(self, db_session, customer):
        account = credit_account_service.open_account(customer.id, [_manual_item(1000)])

        suspended = credit_account_service.suspend_account(account.id, reason="Missed two payments")
        assert suspended.status == credit_account_service.STATUS_SUSPENDED
        assert "Missed two payments" in suspended.notes

        with pytest.raises(AccountStateError):
            credit_account_service.suspend_account(account.id)

        reactivated = credit_account_service.reactivate_account(account.id)
        assert reactivated.status == credit_account_service.STATUS_ACTIVE

        with pytest.raises(AccountStateError):
            credit_account_service.reactivate_account(account.id)


class TestIntegrityGuard:
    def _corrupt(self, db_session, account_id, **fields):
        account = db_session.get(CreditAccount, account_id)
        for key, value in fields.items():
            setattr(account, key, value)
        db_session.commit()

    def test_consistent_account_is_not_touched(self, db_session, customer):
        account = credit_account_service.open_account(customer.id, [_manual_item(1000)])

        report = credit_account_service.recompute_totals(account.id)

        assert report.repaired is False
        assert report.changes == {}

    def test_repair_warns_and_is_idempotent(self, db_session, customer):
        account = credit_account_service.open_account(customer.id, [_manual_item(1000)])
        self._corrupt(db_session, account.id, paid_amount_cents=1000)

        with pytest.warns(IntegrityRepairTriggered):
            report = credit_account_service.recompute_totals(account.id)

        assert report.repaired is True
        assert report.changes["remaining_amount_cents"] == [1000, 0]
        assert report.changes["status"] == ["ACTIVE", "PAID_OFF"]

        repaired = credit_account_service.get_account(account.id)
        assert repaired.remaining_amount_cents == 0
        assert repaired.status == credit_account_service.STATUS_PAID_OFF
        assert repaired.closed_at is not None
        snapshot = repaired.to_dict()

        second = credit_account_service.recompute_totals(account.id)
        assert second.repaired is False
        assert credit_account_service.get_account(account.id).to_dict() == snapshot

    def test_audit_reports_and_fixes(self, db_session, customer, other_customer):
        good = credit_account_service.open_account(customer.id, [_manual_item(1000)])
        bad = credit_account_service.open_account(other_customer.id, [_manual_item(2000)])
        self._corrupt(db_session, bad.id, remaining_amount_cents=5)

        findings = credit_account_service.audit_accounts()
        assert [f["account_id"] for f in findings] == [bad.id]
        assert "balance" in findings[0]["problems"]
        assert findings[0]["repaired"] is False

        fixed = credit_account_service.audit_accounts(fix=True)
        assert fixed[0]["repaired"] is True
        assert credit_account_service.get_account(bad.id).remaining_amount_cents == 2000
        assert credit_account_service.audit_accounts() == []
        assert credit_account_service.get_account(good.id).remaining_amount_cents == 1000

    def test_audit_reports_item_mismatch(self, db_session, customer):
        account = credit_account_service.open_account(customer.id, [_manual_item(1000)])
        self._corrupt(db_session, account.id, total_amount_cents=1200, remaining_amount_cents=1200)

        [finding] = credit_account_service.audit_accounts(fix=True)
        assert finding["problems"] == ["items"]
        assert finding["items_total_cents"] == 1000
        assert finding["repaired"] is False

    def test_closed_at_on_open_account_is_repaired(self, db_session, customer):
        account = credit_account_service.open_account(customer.id, [_manual_item(1000)])
        self._corrupt(db_session, account.id, closed_at=utcnow())

        [finding] = credit_account_service.audit_accounts()
        assert finding["problems"] == ["balance"]

        with pytest.warns(IntegrityRepairTriggered):
            report = credit_account_service.recompute_totals(account.id)

        assert report.repaired is True
        assert report.changes["closed_at"][1] is None
        repaired = credit_account_service.get_account(account.id)
        assert repaired.status == credit_account_service.STATUS_ACTIVE
        assert repaired.closed_at is None
        assert credit_account_service.audit_accounts() == []

    def test_missing_closed_at_on_paid_off_account_is_repaired(self, db_session, customer):
        account = credit_account_service.open_account(customer.id, [_manual_item(1000)])
        self._corrupt(
            db_session,
            account.id,
            paid_amount_cents=1000,
            remaining_amount_cents=0,
            status=credit_account_service.STATUS_PAID_OFF,
            next_payment_date=None,
        )

        with pytest.warns(IntegrityRepairTriggered):
            report = credit_account_service.recompute_totals(account.id)

        assert list(report.changes) == ["closed_at"]
        repaired = credit_account_service.get_account(account.id)
        assert repaired.status == credit_account_service.STATUS_PAID_OFF
        assert repaired.closed_at is not None
        assert credit_account_service.recompute_totals(account.id).repaired is False

    def test_reopened_account_gets_a_due_date(self, db_session, customer):
        account = credit_account_service.open_account(customer.id, [_manual_item(1500)])
        self._corrupt(
            db_session,
            account.id,
            paid_amount_cents=1000,
            remaining_amount_cents=0,
            status=credit_account_service.STATUS_PAID_OFF,
            closed_at=utcnow(),
            next_payment_date=None,
        )

        with pytest.warns(IntegrityRepairTriggered):
            report = credit_account_service.recompute_totals(account.id)

        assert report.changes["status"] == ["PAID_OFF", "ACTIVE"]
        reopened = credit_account_service.get_account(account.id)
        assert reopened.remaining_amount_cents == 500
        assert reopened.closed_at is None
        assert reopened.next_payment_date is not None
        assert reopened.next_payment_date > utcnow()
        assert credit_account_service.get_account_balance(account.id)["schedule"]


class TestAccountBalance:
    def test_balance_summary(self, db_session, customer):
        account = credit_account_service.open_account(
            customer.id, [_manual_item(10003)], installments=4, payment_frequency="WEEKLY"
        )

        balance = credit_account_service.get_account_balance(account.id)

        assert balance["total_amount_cents"] == 10003
        assert balance["remaining_amount_cents"] == 10003
        assert balance["installments_paid"] == 0
        assert balance["payments_count"] == 0
        assert balance["is_overdue"] is False
        assert [s["amount_cents"] for s in balance["schedule"]] == [2500, 2500, 2500, 2503]
        assert balance["schedule"][0]["due_date"] == balance["account"]["next_payment_date"]
        assert len(balance["items"]) == 1

    def test_overdue_listing(self, db_session, customer, other_customer):
        late = credit_account_service.open_account(
            customer.id, [_manual_item(1000)], next_payment_date=utcnow() - timedelta(days=2)
        )
        credit_account_service.open_account(other_customer.id, [_manual_item(1000)])

        assert credit_account_service.get_account_balance(late.id)["is_overdue"] is True
        assert [a.id for a in credit_account_service.list_accounts(overdue_only=True)] == [late.id]
        assert len(credit_account_service.list_accounts(status="ACTIVE")) == 2
        assert [a.id for a in credit_account_service.list_accounts(customer_id=customer.id)] == [late.id]
