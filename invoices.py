# invoices.py
import logging
from typing import Any, Dict, List, Optional

from errors import InvalidInput, InvoiceNotOpen, UpstreamError
from formatting import metadata, object_id, status_color, status_label
from providers import ProviderResponse, StripeClient, path

logger = logging.getLogger(__name__)

OPEN = "open"
PAID = "paid"
DRAFT = "draft"


async def fetch_invoice(stripe: StripeClient, invoice_id: str) -> Dict[str, Any]:
  resp = await stripe.get(path("invoices", invoice_id))
  if not resp.ok:
    raise UpstreamError(resp.error_message("Invoice not found"))
  return resp.body


def require_open(invoice: Dict[str, Any]) -> None:
  if invoice.get("status") != OPEN:
    raise InvoiceNotOpen(invoice.get("status"))


async def pay_out_of_band(stripe: StripeClient, invoice_id: str) -> ProviderResponse:
  resp = await stripe.post(path("invoices", invoice_id, "pay"), {"paid_out_of_band": True})
  if resp.ok:
    logger.info("Invoice %s marked as paid out of band", invoice_id)
  return resp


async def open_invoices(stripe: StripeClient, subscription_id: str) -> List[Dict[str, Any]]:
  resp = await stripe.get("invoices", {"subscription": subscription_id, "status": OPEN, "limit": 100})
  if not resp.ok:
    logger.warning("Could not list open invoices for %s: %s", subscription_id, resp.error_message("unknown error"))
    return []
  return resp.data


async def finalize_if_draft(stripe: StripeClient, invoice: Dict[str, Any], send: bool = False) -> Dict[str, Any]:
  """Finalize a draft invoice, optionally e-mailing it. Returns the latest invoice state."""
  if invoice.get("status") != DRAFT:
    return invoice

  resp = await stripe.post(path("invoices", invoice["id"], "finalize"), {"auto_advance": True})
  if not resp.ok:
    logger.warning("Could not finalize invoice %s: %s", invoice["id"], resp.error_message("unknown error"))
    return invoice

  if send:
    sent = await stripe.post(path("invoices", invoice["id"], "send"))
    if not sent.ok:
      logger.warning("Could not send invoice %s: %s", invoice["id"], sent.error_message("unknown error"))
  return resp.body


def summarize(invoice: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
  if not invoice:
    return None
  return {
    "id": invoice.get("id"),
    "status": invoice.get("status"),
    "amount_due": invoice.get("amount_due"),
    "hosted_invoice_url": invoice.get("hosted_invoice_url"),
  }


def present(invoice: Dict[str, Any]) -> Dict[str, Any]:
  status = invoice.get("status")
  meta = metadata(invoice)
  return {
    "invoice_id": invoice.get("id"),
    "amount_due": invoice.get("amount_due"),
    "amount_paid": invoice.get("amount_paid") or 0,
    "status": status,
    "status_label": status_label(status),
    "status_color": status_color(status),
    "customer_id": object_id(invoice.get("customer")),
    "subscription_id": subscription_of(invoice),
    "description": invoice.get("description") or "Fatura Stripe",
    "created": invoice.get("created"),
    "due_date": invoice.get("due_date"),
    "invoice_url": invoice.get("hosted_invoice_url"),
    "can_generate_pix": status == OPEN,
    "abacate_pix_id": meta.get("abacate_pix_id"),
    "abacate_pix_created": meta.get("abacate_pix_created"),
  }


def subscription_of(invoice: Dict[str, Any]) -> Optional[str]:
  sub = object_id(invoice.get("subscription"))
  if sub:
    return sub
  # newer API versions nest it under parent.subscription_details
  details = (invoice.get("parent") or {}).get("subscription_details") or {}
  return object_id(details.get("subscription"))


async def mark_paid(stripe: StripeClient, invoice_id: Optional[str]) -> Dict[str, Any]:
  """Operator override: settle an open invoice without charging it."""
  if not invoice_id:
    raise InvalidInput("invoice_id is required")

  invoice = await fetch_invoice(stripe, invoice_id)
  require_open(invoice)

  resp = await pay_out_of_band(stripe, invoice_id)
  if not resp.ok:
    raise UpstreamError(resp.error_message("Could not mark invoice as paid"))

  return {
    "success": True,
    "invoice": {
      "id": resp.body.get("id"),
      "status": resp.body.get("status"),
      "amount_paid": resp.body.get("amount_paid"),
    },
    "message": "Invoice marked as paid",
  }
