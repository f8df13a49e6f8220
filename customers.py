# customers.py
import logging
from typing import Any, Dict, List, Optional

from config import Settings
from errors import InvalidInput, NotFound, UpstreamError
from formatting import first_present, normalize_email, object_id
from invoices import OPEN, fetch_invoice, finalize_if_draft, present, subscription_of, summarize
from providers import StripeClient, path

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("active", "trialing", "past_due")
NO_SUBSCRIPTION = "no_subscription"
DEFAULT_PRODUCT_NAME = "Assinatura"


async def find_customer(stripe: StripeClient, email: str) -> Optional[Dict[str, Any]]:
  """Most recently created customer with this e-mail, or None."""
  resp = await stripe.get("customers", {"email": email, "limit": 100})
  if not resp.ok:
    raise UpstreamError(resp.error_message("Could not search customers"))
  customers = resp.data
  if not customers:
    return None
  if len(customers) > 1:
    logger.info("%d customers share %s, using the newest", len(customers), email)
  return max(customers, key=lambda c: c.get("created") or 0)


async def available_product(stripe: StripeClient, settings: Settings) -> Optional[Dict[str, Any]]:
  if not settings.product_id:
    return None
  resp = await stripe.get(path("products", settings.product_id))
  if not resp.ok:
    return None
  return {"id": settings.product_id, "name": resp.body.get("name"), "price_id": settings.price_id or None}


async def product_name_for_price(stripe: StripeClient, price_id: Optional[str]) -> Dict[str, Any]:
  """Resolve unit amount and product display name through price -> product."""
  found = {"unit_amount": 0, "product_name": DEFAULT_PRODUCT_NAME}
  if not price_id:
    return found

  price = await stripe.get(path("prices", price_id))
  if not price.ok:
    return found
  found["unit_amount"] = price.body.get("unit_amount") or 0

  product_id = object_id(price.body.get("product"))
  if product_id:
    product = await stripe.get(path("products", product_id))
    if product.ok:
      found["product_name"] = product.body.get("name") or DEFAULT_PRODUCT_NAME
  return found


async def describe_subscription(stripe: StripeClient, sub: Dict[str, Any]) -> Dict[str, Any]:
  items = (sub.get("items") or {}).get("data") or []
  item = items[0] if items else {}
  price = await product_name_for_price(stripe, object_id(item.get("price")))
  return {
    "id": sub.get("id"),
    "status": sub.get("status"),
    "product_name": price["product_name"],
    "current_period_start": first_present(sub, "current_period_start", "items.data.0.current_period_start"),
    "current_period_end": first_present(sub, "current_period_end", "items.data.0.current_period_end"),
    "subscription_item_id": item.get("id"),
    "current_quantity": item.get("quantity") or 1,
    "unit_amount": price["unit_amount"],
    "invoices": [],
  }


async def lookup(stripe: StripeClient, settings: Settings, email: Optional[str]) -> Dict[str, Any]:
  normalized = normalize_email(email)
  if not normalized:
    raise InvalidInput("Invalid e-mail")

  customer = await find_customer(stripe, normalized)
  if customer is None:
    raise NotFound(
      "Customer not found",
      extra={
        "customer_exists": False,
        "has_subscriptions": False,
        "email": normalized,
        "available_product": await available_product(stripe, settings),
      },
    )
  customer_id = customer["id"]

  inv_resp = await stripe.get("invoices", {"customer": customer_id, "limit": 100})
  if not inv_resp.ok:
    raise UpstreamError(inv_resp.error_message("Could not list invoices"))
  invoices = inv_resp.data

  sub_resp = await stripe.get("subscriptions", {"customer": customer_id, "status": "all", "limit": 100})
  raw_subscriptions = sub_resp.data if sub_resp.ok else []

  by_id: Dict[str, Dict[str, Any]] = {}
  for sub in raw_subscriptions:
    by_id[sub["id"]] = await describe_subscription(stripe, sub)

  loose: List[Dict[str, Any]] = []
  for invoice in invoices:
    sub_id = subscription_of(invoice)
    if sub_id in by_id:
      by_id[sub_id]["invoices"].append(present(invoice))
    else:
      loose.append(present(invoice))

  active = [s for s in by_id.values() if s["status"] in ACTIVE_STATUSES]
  inactive = [s for s in by_id.values() if s["status"] not in ACTIVE_STATUSES and s["invoices"]]
  subscriptions = active + inactive
  if loose:
    subscriptions.append({
      "id": NO_SUBSCRIPTION,
      "status": "active",
      "product_name": "Faturas Avulsas",
      "current_period_end": None,
      "invoices": loose,
    })

  for sub in subscriptions:
    sub["invoices"].sort(key=lambda i: i["created"] or 0, reverse=True)

  has_active = bool(active)
  return {
    "customer_exists": True,
    "has_subscriptions": has_active,
    "available_product": None if has_active else await available_product(stripe, settings),
    "customer": {
      "id": customer_id,
      "email": customer.get("email"),
      "name": customer.get("name"),
    },
    "subscriptions": subscriptions,
    "totals": {
      "total_invoices": len(invoices),
      "open_invoices": len([i for i in invoices if i.get("status") == OPEN]),
    },
  }


async def create_subscription(
  stripe: StripeClient,
  settings: Settings,
  email: Optional[str],
  name: Optional[str] = None,
  quantity: Optional[int] = None,
  customer_id: Optional[str] = None,
) -> Dict[str, Any]:
  normalized = normalize_email(email)
  if not normalized:
    raise InvalidInput("Invalid e-mail")
  if not customer_id and not name:
    raise InvalidInput("name is required to create a new customer")
  qty = quantity or 1
  if qty < 1:
    raise InvalidInput("quantity must be at least 1")
  if not settings.price_id:
    raise UpstreamError("STRIPE_PRICE_ID is not set")

  if customer_id:
    resp = await stripe.get(path("customers", customer_id))
    customer = resp.body if resp.ok else {}
  else:
    resp = await stripe.post("customers", {"email": normalized, "name": name})
    if not resp.ok:
      raise UpstreamError(resp.error_message("Could not create customer"))
    customer = resp.body
    customer_id = customer["id"]
    logger.info("Created customer %s for %s", customer_id, normalized)

  sub_resp = await stripe.post("subscriptions", {
    "customer": customer_id,
    "items": [{"price": settings.price_id, "quantity": qty}],
    "collection_method": "send_invoice",
    "days_until_due": settings.days_until_due,
  })
  if not sub_resp.ok:
    raise UpstreamError(sub_resp.error_message("Could not create subscription"))
  subscription = sub_resp.body
  logger.info("Created subscription %s (qty %d) for %s", subscription.get("id"), qty, customer_id)

  invoice = None
  invoice_id = object_id(subscription.get("latest_invoice"))
  if invoice_id:
    try:
      invoice = await finalize_if_draft(stripe, await fetch_invoice(stripe, invoice_id))
    except UpstreamError as exc:
      logger.warning("Subscription %s created but invoice %s unavailable: %s", subscription.get("id"), invoice_id, exc.message)

  return {
    "success": True,
    "customer": {
      "id": customer_id,
      "email": customer.get("email") or normalized,
      "name": customer.get("name") or name,
    },
    "subscription": {
      "id": subscription.get("id"),
      "status": subscription.get("status"),
    },
    "invoice": summarize(invoice),
  }
