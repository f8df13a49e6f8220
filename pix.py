# pix.py
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from config import Settings
from errors import InvalidInput, UpstreamError
from formatting import digits, first_present, format_brl, format_cpf, format_phone, mask_cpf, object_id
from invoices import fetch_invoice, require_open
from providers import AbacatePayClient, StripeClient, path

logger = logging.getLogger(__name__)

DEFAULT_NAME = "Cliente"
DEFAULT_EMAIL = "cliente@email.com"

QR_IMAGE_FIELDS = ("qrCode.image", "qrCodeImage", "image", "brCodeBase64")
PIX_CODE_FIELDS = ("qrCode.payload", "brCode", "payload", "emv")


async def resolve_payer(
  stripe: StripeClient,
  invoice: Dict[str, Any],
  name: Optional[str],
  email: Optional[str],
) -> Dict[str, str]:
  phone = None
  if not name or not email:
    customer_id = object_id(invoice.get("customer"))
    if customer_id:
      resp = await stripe.get(path("customers", customer_id))
      if resp.ok:
        name = name or resp.body.get("name")
        email = email or resp.body.get("email")
        phone = resp.body.get("phone")
  return {
    "name": name or DEFAULT_NAME,
    "email": email or DEFAULT_EMAIL,
    "cellphone": format_phone(phone),
  }


async def tag_invoice(stripe: StripeClient, invoice_id: str, pix_id: str) -> None:
  resp = await stripe.post(path("invoices", invoice_id), {
    "metadata": {
      "abacate_pix_id": pix_id,
      "abacate_pix_created": datetime.now(timezone.utc).isoformat(timespec="seconds"),
    },
  })
  if not resp.ok:
    logger.warning("Could not tag invoice %s with PIX %s: %s", invoice_id, pix_id, resp.error_message("unknown error"))


async def issue_pix(
  stripe: StripeClient,
  abacate: AbacatePayClient,
  settings: Settings,
  invoice_id: Optional[str],
  cpf: Optional[str],
  customer_name: Optional[str] = None,
  customer_email: Optional[str] = None,
) -> Dict[str, Any]:
  """Create a PIX QR code charging the amount due on an open invoice."""
  if not invoice_id:
    raise InvalidInput("invoice_id is required")
  cpf_clean = digits(cpf)
  if len(cpf_clean) != 11:
    raise InvalidInput("Invalid or missing CPF")

  invoice = await fetch_invoice(stripe, invoice_id)
  require_open(invoice)
  amount = invoice.get("amount_due") or 0

  payer = await resolve_payer(stripe, invoice, customer_name, customer_email)

  resp = await abacate.request("pixQrCode/create", {
    "amount": amount,
    "expiresIn": settings.pix_expires_in,
    "description": f"Fatura {invoice_id}",
    "customer": {
      "name": payer["name"],
      "cellphone": payer["cellphone"],
      "email": payer["email"],
      "taxId": format_cpf(cpf_clean),
    },
    "metadata": {"externalId": invoice_id},
  })
  if resp.status_code not in (200, 201):
    message = resp.error_message("unknown error")
    raise UpstreamError(f"AbacatePay error: {message} (Code: {resp.status_code})")

  result = resp.body.get("data") or resp.body
  pix_id = first_present(result, "id")
  logger.info("PIX %s issued for invoice %s (%d)", pix_id, invoice_id, amount)
  if pix_id:
    await tag_invoice(stripe, invoice_id, pix_id)

  return {
    "success": True,
    "qr_code_url": first_present(result, *QR_IMAGE_FIELDS),
    "pix_code": first_present(result, *PIX_CODE_FIELDS),
    "pix_id": pix_id,
    "amount": amount,
    "amount_formatted": format_brl(amount),
    "customer": {
      "name": payer["name"],
      "email": payer["email"],
      "cpf": mask_cpf(cpf_clean),
    },
    "invoice_id": invoice_id,
    "expires_in": settings.pix_expires_in,
    "raw_response": result,
  }
