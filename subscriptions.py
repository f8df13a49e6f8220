# subscriptions.py
"""Subscription quantity changes and their proration.

Upgrades are billed by voiding whatever is still open on the subscription,
applying the new quantity with the provider's automatic proration turned off
and issuing a single invoice for the prorated difference. The amount comes
from the provider's invoice preview, taken before the quantity changes.
Downgrades only change the quantity; the credit is left to the provider.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from customers import DEFAULT_PRODUCT_NAME
from errors import InvalidInput, NotFound, UpstreamError
from formatting import object_id
from invoices import finalize_if_draft, open_invoices, summarize
from providers import StripeClient, path

logger = logging.getLogger(__name__)

_DISCOUNT_RE = re.compile(r"(\d+\.?\d*)% off")


def _validate_quantity(value: Optional[int]) -> int:
  if value is None or value < 1:
    raise InvalidInput("new_quantity must be at least 1")
  return value


async def preview_invoice(
  stripe: StripeClient,
  subscription: Dict[str, Any],
  item_id: str,
  quantity: int,
  proration_behavior: str,
) -> Optional[Dict[str, Any]]:
  """Ask the provider what the subscription would bill at ``quantity``."""
  resp = await stripe.post("invoices/create_preview", {
    "customer": object_id(subscription.get("customer")),
    "subscription": subscription["id"],
    "subscription_details": {
      "items": [{"id": item_id, "quantity": quantity}],
      "proration_behavior": proration_behavior,
    },
  })
  if not resp.ok:
    logger.warning("Invoice preview failed for %s: %s", subscription["id"], resp.error_message("unknown error"))
    return None
  return resp.body


def proration_lines(preview: Dict[str, Any]) -> List[Dict[str, Any]]:
  lines = []
  for line in (preview.get("lines") or {}).get("data") or []:
    details = (line.get("parent") or {}).get("subscription_item_details") or {}
    lines.append({
      "description": line.get("description"),
      "amount": line.get("amount") or 0,
      "quantity": line.get("quantity"),
      "is_proration": bool(details.get("proration") or line.get("proration")),
    })
  return lines


def prorated_amount(preview: Optional[Dict[str, Any]]) -> int:
  if not preview:
    return 0
  lines = [l for l in proration_lines(preview) if l["is_proration"]]
  if lines:
    return sum(l["amount"] for l in lines)
  return preview.get("amount_due") or 0


async def void_open_invoices(stripe: StripeClient, subscription_id: str) -> List[Dict[str, Any]]:
  voided = []
  for inv in await open_invoices(stripe, subscription_id):
    resp = await stripe.post(path("invoices", inv["id"], "void"))
    if resp.ok:
      voided.append({"id": inv["id"], "amount_due": inv.get("amount_due")})
    else:
      logger.warning("Could not void invoice %s: %s", inv["id"], resp.error_message("unknown error"))
  if voided:
    logger.info("Voided %d open invoice(s) on %s", len(voided), subscription_id)
  return voided


async def invoice_proration(
  stripe: StripeClient,
  subscription: Dict[str, Any],
  amount: int,
  currency: str,
  previous: int,
  new: int,
  days_until_due: int = 7,
) -> Dict[str, Any]:
  customer_id = object_id(subscription.get("customer"))
  if amount > 0:
    item = await stripe.post("invoiceitems", {
      "customer": customer_id,
      "subscription": subscription["id"],
      "amount": amount,
      "currency": currency,
      "description": f"Ajuste pro-rata: {previous} -> {new}",
    })
    if not item.ok:
      raise UpstreamError(item.error_message("Could not add proration to the invoice"))

  resp = await stripe.post("invoices", {
    "customer": customer_id,
    "subscription": subscription["id"],
    "pending_invoice_items_behavior": "include",
    "collection_method": "send_invoice",
    "days_until_due": days_until_due,
    "auto_advance": False,
  })
  if not resp.ok:
    raise UpstreamError(resp.error_message("Could not create invoice"))
  return await finalize_if_draft(stripe, resp.body, send=True)


async def change_quantity(
  stripe: StripeClient,
  subscription_id: Optional[str],
  item_id: Optional[str],
  new_quantity: Optional[int],
  days_until_due: int = 7,
) -> Dict[str, Any]:
  if not subscription_id:
    raise InvalidInput("subscription_id is required")
  if not item_id:
    raise InvalidInput("subscription_item_id is required")
  qty = _validate_quantity(new_quantity)

  resp = await stripe.get(path("subscriptions", subscription_id))
  if not resp.ok:
    raise UpstreamError(resp.error_message("Subscription not found"))
  subscription = resp.body

  items = (subscription.get("items") or {}).get("data") or []
  item = next((i for i in items if i.get("id") == item_id), None)
  if item is None:
    raise UpstreamError("Subscription item not found")
  current = item.get("quantity") or 1

  if qty == current:
    return {
      "success": True,
      "message": "Quantity unchanged",
      "current_quantity": current,
      "new_quantity": qty,
      "changed": False,
    }

  is_upgrade = qty > current
  voided: List[Dict[str, Any]] = []
  amount = 0
  currency = (item.get("price") or {}).get("currency") or subscription.get("currency") or "brl"

  if is_upgrade:
    preview = await preview_invoice(stripe, subscription, item_id, qty, "always_invoice")
    if preview is None:
      raise UpstreamError("Could not preview the upgrade proration")
    amount = prorated_amount(preview)
    if amount <= 0:
      raise UpstreamError(f"Upgrade proration must be positive (got {amount})")
    currency = preview.get("currency") or currency
    voided = await void_open_invoices(stripe, subscription_id)

  update = await stripe.post(path("subscription_items", item_id), {
    "quantity": qty,
    "proration_behavior": "none",
  })
  if not update.ok:
    raise UpstreamError(update.error_message("Could not update subscription"))
  logger.info("Subscription %s quantity %d -> %d", subscription_id, current, qty)

  invoice = None
  if is_upgrade:
    invoice = await invoice_proration(stripe, subscription, amount, currency, current, qty, days_until_due)

  if is_upgrade:
    message = "Upgrade applied. "
    if voided:
      message += f"{len(voided)} old invoice(s) voided. "
    message += "New invoice issued."
  else:
    message = "Downgrade applied."

  return {
    "success": True,
    "message": message,
    "is_upgrade": is_upgrade,
    "previous_quantity": current,
    "new_quantity": qty,
    "changed": True,
    "voided_invoices": voided,
    "invoice": summarize(invoice),
  }


def unit_amount_of(price: Dict[str, Any], item_price: Dict[str, Any]) -> int:
  amount = price.get("unit_amount") or 0
  tiers = price.get("tiers") or []
  if price.get("billing_scheme") == "tiered" and tiers:
    amount = tiers[0].get("unit_amount") or tiers[0].get("flat_amount") or 0
  if not amount:
    amount = item_price.get("unit_amount") or 0
  return amount


async def preview_quantity_change(
  stripe: StripeClient,
  subscription_id: Optional[str],
  new_quantity: Optional[int],
) -> Dict[str, Any]:
  """Read-only simulation of a quantity change.

  The naive ``quantity * unit_amount`` figures are for display; the
  provider's preview ``amount_due``/``total`` is what would actually be billed.
  A negative preview total is a credit.
  """
  if not subscription_id or new_quantity is None:
    raise InvalidInput("subscription_id and new_quantity are required")
  qty = _validate_quantity(new_quantity)

  resp = await stripe.get(path("subscriptions", subscription_id))
  if not resp.ok:
    raise NotFound("Subscription not found")
  subscription = resp.body

  items_resp = await stripe.get("subscription_items", {"subscription": subscription_id})
  if not items_resp.ok or not items_resp.data:
    raise InvalidInput("Could not read the subscription items")
  item = items_resp.data[0]
  item_price = item.get("price") or {}
  current = item.get("quantity") or 1
  if qty == current:
    raise InvalidInput("new_quantity is equal to the current quantity")

  price_resp = await stripe.get(path("prices", object_id(item_price)))
  if not price_resp.ok:
    raise InvalidInput("Could not read the subscription price")
  price = price_resp.body
  unit_amount = unit_amount_of(price, item_price)
  currency = price.get("currency") or "brl"

  product_name = DEFAULT_PRODUCT_NAME
  product_id = object_id(price.get("product"))
  if product_id:
    product = await stripe.get(path("products", product_id))
    if product.ok:
      product_name = product.body.get("name") or product_name

  is_upgrade = qty > current
  preview = await preview_invoice(stripe, subscription, item["id"], qty, "always_invoice" if is_upgrade else "none")

  preview_total = 0
  pro_rata = 0
  lines: List[Dict[str, Any]] = []
  has_discount = False
  discount_percent = 0.0
  if preview:
    preview_total = preview.get("total") or 0
    pro_rata = preview.get("amount_due") or 0
    lines = proration_lines(preview)
    if preview.get("discounts"):
      has_discount = True
      for line in lines:
        match = _DISCOUNT_RE.search(line["description"] or "")
        if match:
          discount_percent = float(match.group(1))
          break

  pending = await open_invoices(stripe, subscription_id)

  return {
    "success": True,
    "simulation": {
      "subscription_id": subscription_id,
      "subscription_item_id": item["id"],
      "product_name": product_name,
      "currency": currency,
      "unit_amount": unit_amount,
      "current_quantity": current,
      "new_quantity": qty,
      "is_upgrade": is_upgrade,
      "difference": abs(qty - current),
      "current_monthly": current * unit_amount,
      "new_monthly": qty * unit_amount,
      "monthly_difference": (qty - current) * unit_amount,
      "preview_total": preview_total,
      "pro_rata_amount": pro_rata,
      "has_credit": preview_total < 0,
      "credit_amount": abs(preview_total) if preview_total < 0 else 0,
      "has_discount": has_discount,
      "discount_percent": discount_percent,
      "proration_lines": lines,
      "open_invoices_count": len(pending),
      "open_invoices": [
        {"id": inv.get("id"), "amount_due": inv.get("amount_due"), "status": inv.get("status")}
        for inv in pending
      ],
    },
  }
