# models.py
from typing import Optional

from pydantic import BaseModel

# Request bodies. Fields are optional so that missing values get the
# endpoint's own 400 message instead of a generic validation error.


class LookupRequest(BaseModel):
  email: Optional[str] = None


class PayRequest(BaseModel):
  invoice_id: Optional[str] = None


class PixRequest(BaseModel):
  invoice_id: Optional[str] = None
  cpf: Optional[str] = None
  customer_name: Optional[str] = None
  customer_email: Optional[str] = None


class CheckRequest(BaseModel):
  invoice_id: Optional[str] = None
  pix_id: Optional[str] = None


class UpdateSubscriptionRequest(BaseModel):
  subscription_id: Optional[str] = None
  subscription_item_id: Optional[str] = None
  new_quantity: Optional[int] = None


class SimulateUpgradeRequest(BaseModel):
  subscription_id: Optional[str] = None
  new_quantity: Optional[int] = None


class NewSubscriptionRequest(BaseModel):
  email: Optional[str] = None
  name: Optional[str] = None
  quantity: Optional[int] = None
  customer_id: Optional[str] = None
