"""Invoice PDF rendering.

Renders an ``InvoiceDocument`` to HTML, converts it with WeasyPrint and
writes ``<artifact_dir>/<artifact_id>.pdf``. The artifact id is an opaque
uuid4 hex string; the notifier resolves it back to a path with
``artifact_path``.
"""

from __future__ import annotations

import html
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from app.config import settings
from app.schemas.invoice import InvoiceDocument, InvoiceParty

logger = logging.getLogger(__name__)


class RenderError(Exception):
    pass


def artifact_path(artifact_id: str, artifact_dir: str | None = None) -> Path:
    return Path(artifact_dir or settings.invoice_artifact_dir) / f"{artifact_id}.pdf"


def _money(value: Decimal | None) -> str:
    amount = Decimal(str(value or Decimal("0.00")))
    return f"{amount:,.2f}"


def _format_date(value: datetime | None) -> str:
    if not value:
        return "N/A"
    return value.strftime("%Y-%m-%d")


def _party_lines(party: InvoiceParty) -> str:
    lines = [party.name, party.address, party.address2, f"{party.postal_code} {party.city}", party.country]
    return "<br>".join(html.escape(line) for line in lines if line)


def _render_invoice_html(document: InvoiceDocument, artifact_id: str) -> str:
    currency = html.escape(document.currency)
    rows = "".join(
        (
            "<tr>"
            f"<td>{html.escape(item.name)}</td>"
            f"<td class='num'>{item.quantity}</td>"
            f"<td class='num'>{currency} {_money(item.unit_cost)}</td>"
            f"<td class='num'>{currency} {_money(item.tax)}</td>"
            f"<td class='num'>{currency} {_money(item.discount)}</td>"
            f"<td class='num'>{currency} {_money(item.amount)}</td>"
            "</tr>"
        )
        for item in document.items
    )
    if not rows:
        rows = "<tr><td colspan='6'>No line items</td></tr>"
    reference = html.escape(document.issuer.reference or "-")

    return f"""
<!doctype html>
<html>
<head>
<meta charset=\"utf-8\">
<title>Invoice {artifact_id}</title>
<style>
  @page {{ size: A4; margin: 18mm; }}
  body {{ font-family: DejaVu Sans, Arial, sans-serif; color: #0f172a; font-size: 12px; }}
  .top {{ display: flex; justify-content: space-between; align-items: flex-start; margin-bottom: 16px; }}
  .h1 {{ font-size: 22px; font-weight: 700; margin: 0; }}
  .muted {{ color: #475569; }}
  .box {{ border: 1px solid #cbd5e1; border-radius: 8px; padding: 10px; margin-bottom: 12px; }}
  table {{ width: 100%; border-collapse: collapse; margin-top: 8px; }}
  th, td {{ border-bottom: 1px solid #e2e8f0; padding: 8px 6px; text-align: left; }}
  th {{ background: #f8fafc; font-size: 11px; text-transform: uppercase; color: #334155; }}
  .num {{ text-align: right; white-space: nowrap; }}
  .total {{ font-size: 14px; font-weight: 700; }}
</style>
</head>
<body>
  <div class=\"top\">
    <div>
      <p class=\"h1\">Invoice</p>
      <p class=\"muted\">Reference: {reference}</p>
      <p class=\"muted\">{html.escape(document.description)}</p>
    </div>
    <div class=\"muted\" style=\"text-align:right\">
      <div>Date: {_format_date(document.invoice_date)}</div>
      <div>Payment due: {_format_date(document.payment_term)}</div>
    </div>
  </div>

  <div class=\"box\"><strong>From</strong><br>{_party_lines(document.issuer)}</div>
  <div class=\"box\"><strong>Billed To</strong><br>{_party_lines(document.customer)}</div>

  <table>
    <thead>
      <tr>
        <th>Item</th>
        <th class=\"num\">Qty</th>
        <th class=\"num\">Unit Cost</th>
        <th class=\"num\">Tax</th>
        <th class=\"num\">Discount</th>
        <th class=\"num\">Amount</th>
      </tr>
    </thead>
    <tbody>
      {rows}
    </tbody>
  </table>

  <p class=\"total\" style=\"text-align:right\">Total: {currency} {_money(document.total)}</p>
</body>
</html>
"""


def _build_pdf_bytes(html_content: str) -> bytes:
    from weasyprint import HTML

    return HTML(string=html_content).write_pdf()


class PdfInvoiceRenderer:
    def __init__(self, artifact_dir: str | None = None):
        self.artifact_dir = artifact_dir or settings.invoice_artifact_dir

    def render(self, document: InvoiceDocument) -> str:
        """Render ``document`` to a PDF artifact and return its id.

        Raises:
            RenderError: HTML conversion or the artifact write failed.
        """
        artifact_id = uuid.uuid4().hex
        path = artifact_path(artifact_id, self.artifact_dir)
        try:
            pdf_bytes = _build_pdf_bytes(_render_invoice_html(document, artifact_id))
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(pdf_bytes)
        except Exception as exc:
            raise RenderError(f"Failed to render invoice for {document.customer.name}: {exc}") from exc
        logger.info(f"Rendered invoice artifact {artifact_id} ({len(pdf_bytes)} bytes)")
        return artifact_id
