"""Tests for the billing calendar and due predicate."""

from datetime import date

import pytest

from app.models.billing import DispatchSource, DispatchStatus, InvoiceDispatch
from app.models.catalog import DurationUnit, SubscriptionStatus
from app.services import subscriptions
from app.services.invoice_dispatch import CycleAlreadyClaimedError, claim_cycle
from app.services.subscriptions import Subscriptions, billing_date, is_due
from tests.factories import create_plan, create_subscriber, create_subscription

# =============================================================================
# add_units Tests
# =============================================================================


class TestAddUnits:
    """Tests for add_units."""

    def test_days(self):
        assert subscriptions.add_units(date(2026, 1, 30), 3, DurationUnit.day) == date(2026, 2, 2)

    def test_weeks(self):
        assert subscriptions.add_units(date(2026, 1, 1), 2, DurationUnit.week) == date(2026, 1, 15)

    def test_month_end_clamps(self):
        """Jan 31 plus one month lands on the last day of February."""
        assert subscriptions.add_units(date(2026, 1, 31), 1, DurationUnit.month) == date(2026, 2, 28)
        assert subscriptions.add_units(date(2024, 1, 31), 1, DurationUnit.month) == date(2024, 2, 29)

    def test_year_rollover(self):
        assert subscriptions.add_units(date(2025, 11, 15), 3, DurationUnit.month) == date(2026, 2, 15)

    def test_years(self):
        assert subscriptions.add_units(date(2024, 2, 29), 1, DurationUnit.year) == date(2025, 2, 28)


# =============================================================================
# billing_date Tests
# =============================================================================


class TestBillingDate:
    """Tests for billing_date."""

    def test_counts_from_contract_start(self, subscription):
        """Month-end starts do not drift after a short month."""
        subscription.contract_start_date = date(2026, 1, 31)
        assert billing_date(subscription, 0) == date(2026, 1, 31)
        assert billing_date(subscription, 1) == date(2026, 2, 28)
        assert billing_date(subscription, 2) == date(2026, 3, 31)

    def test_none_after_last_cycle(self, subscription):
        assert billing_date(subscription, subscription.billing_frequency) is None


# =============================================================================
# is_due / list_due Tests
# =============================================================================


class TestDuePredicate:
    """Tests for is_due and the matching SQL filter."""

    def test_due_on_next_billing_date(self, subscription):
        assert is_due(subscription, date(2026, 1, 15))

    def test_not_due_other_day(self, subscription):
        assert not is_due(subscription, date(2026, 1, 16))

    def test_not_due_when_inactive(self, subscription):
        subscription.status = SubscriptionStatus.inactive
        assert not is_due(subscription, date(2026, 1, 15))

    def test_not_due_when_pending_payment(self, subscription):
        subscription.status = SubscriptionStatus.pending_payment
        assert not is_due(subscription, date(2026, 1, 15))

    def test_not_due_when_all_cycles_billed(self, subscription):
        subscription.billed_cycles = subscription.billing_frequency
        assert not is_due(subscription, date(2026, 1, 15))

    def test_list_due_matches_predicate(self, db_session):
        """The query selects exactly the rows is_due accepts."""
        plan = create_plan(db_session, billing_frequency=3)
        today = date(2026, 3, 1)
        due = create_subscription(
            db_session, create_subscriber(db_session), plan, contract_start_date=today
        )
        create_subscription(
            db_session,
            create_subscriber(db_session),
            plan,
            contract_start_date=today,
            status=SubscriptionStatus.inactive,
        )
        create_subscription(
            db_session,
            create_subscriber(db_session),
            plan,
            contract_start_date=today,
            billed_cycles=3,
        )
        create_subscription(
            db_session,
            create_subscriber(db_session),
            plan,
            contract_start_date=date(2026, 3, 2),
        )

        selected = Subscriptions.list_due(db_session, today)

        assert [s.id for s in selected] == [due.id]
        assert all(is_due(s, today) for s in selected)


# =============================================================================
# claim_cycle Tests
# =============================================================================


class TestClaimCycle:
    """Tests for claim_cycle."""

    def test_claim_advances_subscription(self, db_session, subscription):
        dispatch = claim_cycle(db_session, subscription, DispatchSource.scheduler)
        db_session.commit()

        assert dispatch.billing_cycle == 1
        assert dispatch.status == DispatchStatus.pending
        assert subscription.billed_cycles == 1
        assert subscription.next_billing_date == date(2026, 2, 15)
        assert not is_due(subscription, date(2026, 1, 15))

    def test_last_cycle_clears_next_billing_date(self, db_session):
        plan = create_plan(db_session, billing_frequency=1)
        subscription = create_subscription(db_session, create_subscriber(db_session), plan)

        claim_cycle(db_session, subscription, DispatchSource.scheduler)

        assert subscription.billed_cycles == 1
        assert subscription.next_billing_date is None

    def test_duplicate_claim_rejected(self, session_factory):
        db = session_factory()
        try:
            plan = create_plan(db)
            subscription = create_subscription(db, create_subscriber(db), plan)
            db.add(
                InvoiceDispatch(
                    subscription_id=subscription.id,
                    billing_cycle=1,
                    source=DispatchSource.event,
                )
            )
            db.commit()

            with pytest.raises(CycleAlreadyClaimedError) as excinfo:
                claim_cycle(db, subscription, DispatchSource.scheduler)
            db.rollback()

            assert excinfo.value.subscription_id == subscription.id
            assert excinfo.value.billing_cycle == 1

            db.refresh(subscription)
            assert subscription.billed_cycles == 0
        finally:
            db.close()
