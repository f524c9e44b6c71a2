"""Tests for invoice assembly."""

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from app.schemas.billing import InvoicePayload
from app.services import billing_automation
from app.services.invoice_assembly import (
    InvoiceDeliveryError,
    InvoiceRenderError,
    assemble,
    build_invoice,
    invoice_subject,
    unit_cost,
)
from tests.mocks import FakeNotifier, FakeRenderer


@pytest.fixture()
def payload(db_session, subscription, plan, subscriber) -> InvoicePayload:
    address = subscriber.addresses[0]
    subscription.billed_cycles = 1
    return billing_automation.build_payload(subscription, plan, subscriber, address)


class TestUnitCost:
    def test_proration(self):
        assert unit_cost(Decimal("120.0"), 12) == Decimal("10.00")

    def test_rounds_to_cents(self):
        assert unit_cost(Decimal("100.00"), 3) == Decimal("33.33")

    @pytest.mark.parametrize("frequency", [0, -1])
    def test_non_positive_frequency_raises(self, frequency):
        with pytest.raises(ValueError):
            unit_cost(Decimal("120.00"), frequency)


class TestBuildInvoice:
    def test_single_line_item(self, payload):
        now = datetime(2026, 1, 15, 9, 0, tzinfo=UTC)

        document = build_invoice(payload, now=now)

        assert len(document.items) == 1
        item = document.items[0]
        assert item.name == "MOV-PRM Premium"
        assert item.unit_cost == Decimal("10.00")
        assert item.quantity == 1
        assert item.tax == Decimal("0.00")
        assert item.discount == Decimal("0.00")
        assert document.total == Decimal("10.00")

    def test_dates_and_parties(self, payload):
        now = datetime(2026, 1, 15, 9, 0, tzinfo=UTC)

        document = build_invoice(payload, now=now)

        assert document.invoice_date == now
        assert document.payment_term.date() == date(2026, 1, 22)
        assert document.description == "Invoice Description"
        assert document.customer.name == "Ada Lovelace"
        assert document.customer.city == "Düsseldorf"
        assert document.issuer.name == "Movido"


class TestAssemble:
    def test_renders_then_delivers(self, payload):
        renderer = FakeRenderer()
        notifier = FakeNotifier()

        artifact_id = assemble(payload, renderer=renderer, notifier=notifier)

        assert renderer.calls == 1
        assert notifier.sent == [(payload.user.email, invoice_subject(), artifact_id)]
        assert invoice_subject() == "Invoice For Movido Subscription"

    def test_existing_artifact_skips_render(self, payload):
        """Retries deliver the stored artifact instead of rendering again."""
        renderer = FakeRenderer()
        notifier = FakeNotifier()

        artifact_id = assemble(payload, "abc123", renderer=renderer, notifier=notifier)

        assert artifact_id == "abc123"
        assert renderer.calls == 0
        assert notifier.sent[0][2] == "abc123"

    def test_render_failure_sends_nothing(self, payload):
        notifier = FakeNotifier()

        with pytest.raises(InvoiceRenderError) as excinfo:
            assemble(payload, renderer=FakeRenderer(fail=True), notifier=notifier)

        assert excinfo.value.artifact_id is None
        assert notifier.attempts == 0

    def test_delivery_failure_carries_artifact_id(self, payload):
        renderer = FakeRenderer()

        with pytest.raises(InvoiceDeliveryError) as excinfo:
            assemble(payload, renderer=renderer, notifier=FakeNotifier(failures=1))

        assert renderer.calls == 1
        assert excinfo.value.artifact_id
