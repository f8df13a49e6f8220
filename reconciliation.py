# reconciliation.py
"""Settle invoices whose PIX charge was paid.

Two entry points: client-side polling (``check_payment``) and the PIX
provider's webhook (``handle_webhook``). Both only ever move an invoice from
``open`` to ``paid``; calling them again after that is harmless.
"""
import hmac
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from config import Settings
from errors import BridgeError, InvalidInput, Unauthorized, UpstreamError
from formatting import first_present
from invoices import OPEN, PAID, pay_out_of_band
from providers import AbacatePayClient, StripeClient, path

logger = logging.getLogger(__name__)

PAID_STATUSES = frozenset({"PAID", "COMPLETED", "CONFIRMED", "APPROVED", "RECEIVED", "SETTLED", "SUCCESS"})
PAYMENT_EVENT = "billing.paid"

PixLookup = Callable[[AbacatePayClient, str], Awaitable[Optional[Dict[str, Any]]]]
InvoiceLookup = Callable[[StripeClient, str, Dict[str, Any]], Awaitable[Optional[Dict[str, Any]]]]


def is_paid(status: Optional[str]) -> bool:
  return (status or "").upper() in PAID_STATUSES


async def pix_by_id(abacate: AbacatePayClient, pix_id: str) -> Optional[Dict[str, Any]]:
  resp = await abacate.get("pixQrCode/check", {"id": pix_id})
  if not resp.ok or not resp.body:
    return None
  return resp.body.get("data") or resp.body


async def pix_from_list(abacate: AbacatePayClient, pix_id: str) -> Optional[Dict[str, Any]]:
  resp = await abacate.get("pixQrCode/list")
  if not resp.ok:
    return None
  return next((pix for pix in resp.data if pix.get("id") == pix_id), None)


PIX_LOOKUPS: Sequence[PixLookup] = (pix_by_id, pix_from_list)


async def find_pix(abacate: AbacatePayClient, pix_id: str, lookups: Sequence[PixLookup] = PIX_LOOKUPS) -> Dict[str, Any]:
  for lookup in lookups:
    try:
      pix = await lookup(abacate, pix_id)
    except UpstreamError as exc:
      logger.warning("PIX lookup %s failed for %s: %s", lookup.__name__, pix_id, exc.message)
      continue
    if pix is not None:
      return pix
    logger.info("PIX lookup %s found nothing for %s", lookup.__name__, pix_id)
  raise UpstreamError("PIX charge not found at AbacatePay")


async def check_payment(
  stripe: StripeClient,
  abacate: AbacatePayClient,
  invoice_id: Optional[str],
  pix_id: Optional[str],
) -> Dict[str, Any]:
  if not invoice_id:
    raise InvalidInput("invoice_id is required")
  if not pix_id:
    raise InvalidInput("pix_id is required")

  pix = await find_pix(abacate, pix_id)
  status = str(pix.get("status") or "PENDING")
  result: Dict[str, Any] = {
    "paid": is_paid(status),
    "status": status,
    "invoice_updated": False,
    "pix_data": pix,
  }
  if not result["paid"]:
    return result

  inv_resp = await stripe.get(path("invoices", invoice_id))
  if not inv_resp.ok:
    result["stripe_error"] = inv_resp.error_message("Invoice not found")
    return result

  invoice_status = inv_resp.body.get("status")
  if invoice_status == OPEN:
    pay = await pay_out_of_band(stripe, invoice_id)
    if pay.ok:
      result["invoice_updated"] = True
      result["stripe_status"] = PAID
    else:
      result["stripe_error"] = pay.error_message("Could not mark invoice as paid")
  elif invoice_status == PAID:
    result["stripe_status"] = "already_paid"
  else:
    logger.warning("PIX %s is paid but invoice %s is %s", pix_id, invoice_id, invoice_status)
    result["stripe_status"] = invoice_status
  return result


async def invoice_by_pix_tag(stripe: StripeClient, pix_id: str, event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
  resp = await stripe.get("invoices/search", {"query": f'metadata["abacate_pix_id"]:"{pix_id}"'})
  if not resp.ok or not resp.data:
    return None
  return resp.data[0]


async def invoice_by_external_id(stripe: StripeClient, pix_id: str, event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
  invoice_id = first_present(event, "data.pixQrCode.metadata.externalId", "data.metadata.externalId")
  if not invoice_id:
    return None
  resp = await stripe.get(path("invoices", invoice_id))
  return resp.body if resp.ok else None


INVOICE_LOOKUPS: Sequence[InvoiceLookup] = (invoice_by_pix_tag, invoice_by_external_id)


def check_secret(settings: Settings, received: Optional[str]) -> None:
  if not settings.webhook_secret:
    return
  if not received or not hmac.compare_digest(received.encode(), settings.webhook_secret.encode()):
    logger.error("Webhook called with an invalid secret")
    raise Unauthorized("Invalid secret")


async def handle_webhook(stripe: StripeClient, event: Any) -> Dict[str, Any]:
  """Process a PIX provider event. Never raises: the sender retries on anything but 2xx."""
  try:
    return await _handle_event(stripe, event)
  except Exception as exc:
    logger.exception("Webhook processing failed")
    message = exc.message if isinstance(exc, BridgeError) else str(exc)
    return {"received": True, "error": message}


async def _handle_event(stripe: StripeClient, event: Any) -> Dict[str, Any]:
  if not isinstance(event, dict):
    logger.error("Webhook payload is not an object")
    return {"received": True, "error": "Invalid payload"}

  if event.get("event") != PAYMENT_EVENT:
    logger.info("Webhook event ignored: %s", event.get("event"))
    return {"received": True, "ignored": True}

  pix_id = first_present(event, "data.pixQrCode.id")
  if not pix_id:
    logger.error("Webhook %s without a PIX id", PAYMENT_EVENT)
    return {"received": True, "error": "pix_id not found"}
  logger.info(
    "Webhook: PIX %s paid (status: %s, amount: %s)",
    pix_id,
    first_present(event, "data.pixQrCode.status"),
    first_present(event, "data.payment.amount") or 0,
  )

  invoice = None
  for lookup in INVOICE_LOOKUPS:
    invoice = await lookup(stripe, pix_id, event)
    if invoice is not None:
      break
  if invoice is None:
    logger.warning("Webhook: no invoice found for PIX %s", pix_id)
    return {"received": True, "pix_id": pix_id, "invoice_found": False}

  result: Dict[str, Any] = {"received": True, "pix_id": pix_id, "invoice_id": invoice["id"], "invoice_updated": False}
  status = invoice.get("status")
  if status == OPEN:
    pay = await pay_out_of_band(stripe, invoice["id"])
    if pay.ok:
      result["invoice_updated"] = True
      result["new_status"] = PAID
    else:
      result["error"] = pay.error_message("Could not mark invoice as paid")
      logger.error("Webhook: could not pay invoice %s: %s", invoice["id"], result["error"])
  elif status == PAID:
    logger.info("Webhook: invoice %s was already paid", invoice["id"])
    result["already_paid"] = True
  else:
    logger.warning("Webhook: invoice %s is %s, leaving it untouched", invoice["id"], status)
    result["current_status"] = status
  return result
