"""Tests for PDF rendering and SMTP delivery of invoices."""

import smtplib
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from app.schemas.invoice import InvoiceDocument, InvoiceLineItem, InvoiceParty
from app.services import email as email_service
from app.services import invoice_renderer
from app.services.email import DeliveryError, SmtpNotifier, send_email
from app.services.invoice_renderer import PdfInvoiceRenderer, RenderError, artifact_path
from tests.mocks import FakeSMTP


@pytest.fixture()
def document():
    party = InvoiceParty(
        name="Ada <Lovelace>",
        address="Königsallee 1",
        postal_code="40212",
        city="Düsseldorf",
        country="Germany",
    )
    return InvoiceDocument(
        issuer=party.model_copy(update={"name": "Movido", "reference": "ref"}),
        customer=party,
        invoice_date=datetime(2026, 1, 15, tzinfo=UTC),
        payment_term=datetime(2026, 1, 22, tzinfo=UTC),
        currency="EUR",
        items=[InvoiceLineItem(name="MOV-PRM Premium", unit_cost=Decimal("10.00"))],
    )


@pytest.fixture()
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(email_service.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


@pytest.fixture()
def smtp_config():
    return {
        "host": "smtp.test",
        "port": 587,
        "username": "billing",
        "password": "secret",
        "use_tls": True,
        "use_ssl": False,
        "from_email": "billing@movido.test",
        "from_name": "Movido",
        "timeout": 10,
    }


# =============================================================================
# Renderer
# =============================================================================


class TestInvoiceHtml:
    def test_contains_items_and_totals(self, document):
        html = invoice_renderer._render_invoice_html(document, "abc")

        assert "MOV-PRM Premium" in html
        assert "EUR 10.00" in html
        assert "Total: EUR 10.00" in html
        assert "2026-01-22" in html

    def test_escapes_party_names(self, document):
        html = invoice_renderer._render_invoice_html(document, "abc")

        assert "Ada &lt;Lovelace&gt;" in html
        assert "<Lovelace>" not in html


class TestPdfInvoiceRenderer:
    def test_writes_artifact(self, document, tmp_path, monkeypatch):
        monkeypatch.setattr(invoice_renderer, "_build_pdf_bytes", lambda html: b"%PDF-1.7")
        renderer = PdfInvoiceRenderer(str(tmp_path))

        artifact_id = renderer.render(document)

        path = artifact_path(artifact_id, str(tmp_path))
        assert path.read_bytes() == b"%PDF-1.7"
        assert len(artifact_id) == 32

    def test_artifact_ids_are_unique(self, document, tmp_path, monkeypatch):
        monkeypatch.setattr(invoice_renderer, "_build_pdf_bytes", lambda html: b"%PDF")
        renderer = PdfInvoiceRenderer(str(tmp_path))

        assert renderer.render(document) != renderer.render(document)

    def test_conversion_failure_raises_render_error(self, document, tmp_path, monkeypatch):
        def broken(html):
            raise RuntimeError("font missing")

        monkeypatch.setattr(invoice_renderer, "_build_pdf_bytes", broken)

        with pytest.raises(RenderError):
            PdfInvoiceRenderer(str(tmp_path)).render(document)
        assert list(tmp_path.iterdir()) == []


# =============================================================================
# Email
# =============================================================================


class TestSendEmail:
    def test_sends_with_pdf_attachment(self, fake_smtp, smtp_config, tmp_path):
        pdf = tmp_path / "abc.pdf"
        pdf.write_bytes(b"%PDF-1.7")

        send_email("ada@example.com", "Invoice", "body", attachments=[pdf], config=smtp_config)

        [server] = fake_smtp.instances
        assert server.started_tls
        assert server.logged_in
        assert not server.connected
        from_addr, to_addrs, message = server.messages[0]
        assert from_addr == "billing@movido.test"
        assert to_addrs == ["ada@example.com"]
        assert "application/pdf" in message
        assert 'filename="abc.pdf"' in message

    def test_missing_attachment(self, fake_smtp, smtp_config, tmp_path):
        with pytest.raises(DeliveryError):
            send_email(
                "ada@example.com",
                "Invoice",
                "body",
                attachments=[tmp_path / "missing.pdf"],
                config=smtp_config,
            )
        assert fake_smtp.instances == []

    def test_smtp_failure(self, monkeypatch, smtp_config):
        class RefusingSMTP(FakeSMTP):
            def sendmail(self, from_addr, to_addrs, msg):
                raise smtplib.SMTPRecipientsRefused({to_addrs[0]: (550, b"no such user")})

        monkeypatch.setattr(email_service.smtplib, "SMTP", RefusingSMTP)

        with pytest.raises(DeliveryError):
            send_email("ada@example.com", "Invoice", "body", config=smtp_config)


class TestSmtpNotifier:
    def test_attaches_artifact(self, fake_smtp, smtp_config, tmp_path):
        artifact_path("abc", str(tmp_path)).write_bytes(b"%PDF")
        notifier = SmtpNotifier(artifact_dir=str(tmp_path), config=smtp_config)

        notifier.send("ada@example.com", "Invoice For Movido Subscription", "abc")

        message = fake_smtp.instances[0].messages[0][2]
        assert "Invoice For Movido Subscription" in message
        assert 'filename="abc.pdf"' in message
