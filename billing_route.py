# billing_route.py
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

import customers
import invoices
import pix
import reconciliation
import subscriptions
from config import Settings, get_settings
from models import (
  CheckRequest,
  LookupRequest,
  NewSubscriptionRequest,
  PayRequest,
  PixRequest,
  SimulateUpgradeRequest,
  UpdateSubscriptionRequest,
)
from providers import AbacatePayClient, StripeClient, get_abacate, get_stripe

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["billing"])


@router.post("/stripe")
async def lookup_customer(
  req: LookupRequest,
  stripe: StripeClient = Depends(get_stripe),
  settings: Settings = Depends(get_settings),
):
  return await customers.lookup(stripe, settings, req.email)


@router.post("/pay")
async def mark_invoice_paid(req: PayRequest, stripe: StripeClient = Depends(get_stripe)):
  return await invoices.mark_paid(stripe, req.invoice_id)


@router.post("/pix")
async def create_pix(
  req: PixRequest,
  stripe: StripeClient = Depends(get_stripe),
  abacate: AbacatePayClient = Depends(get_abacate),
  settings: Settings = Depends(get_settings),
):
  return await pix.issue_pix(stripe, abacate, settings, req.invoice_id, req.cpf, req.customer_name, req.customer_email)


@router.post("/check")
async def check_pix(
  req: CheckRequest,
  stripe: StripeClient = Depends(get_stripe),
  abacate: AbacatePayClient = Depends(get_abacate),
):
  return await reconciliation.check_payment(stripe, abacate, req.invoice_id, req.pix_id)


@router.post("/update-subscription")
async def update_subscription(
  req: UpdateSubscriptionRequest,
  stripe: StripeClient = Depends(get_stripe),
  settings: Settings = Depends(get_settings),
):
  return await subscriptions.change_quantity(
    stripe,
    req.subscription_id,
    req.subscription_item_id,
    req.new_quantity,
    settings.days_until_due,
  )


@router.post("/simulate-upgrade")
async def simulate_upgrade(req: SimulateUpgradeRequest, stripe: StripeClient = Depends(get_stripe)):
  return await subscriptions.preview_quantity_change(stripe, req.subscription_id, req.new_quantity)


@router.post("/subscription")
async def create_subscription(
  req: NewSubscriptionRequest,
  stripe: StripeClient = Depends(get_stripe),
  settings: Settings = Depends(get_settings),
):
  return await customers.create_subscription(stripe, settings, req.email, req.name, req.quantity, req.customer_id)


def verified_webhook(
  webhook_secret: Optional[str] = Query(None, alias="webhookSecret"),
  settings: Settings = Depends(get_settings),
) -> None:
  reconciliation.check_secret(settings, webhook_secret)


# verified_webhook stays ahead of get_stripe
@router.post("/webhook-abacatepay")
async def abacatepay_webhook(
  request: Request,
  _: None = Depends(verified_webhook),
  stripe: StripeClient = Depends(get_stripe),
):
  try:
    event = await request.json()
  except (json.JSONDecodeError, UnicodeDecodeError):
    logger.error("Webhook body is not valid JSON")
    return {"received": True, "error": "Invalid payload"}
  return await reconciliation.handle_webhook(stripe, event)
