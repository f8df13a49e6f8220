# config.py
import os
from functools import lru_cache
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
  stripe_secret: str = ""
  abacatepay_key: str = ""
  webhook_secret: str = ""
  stripe_api_base: str = "https://api.stripe.com/v1"
  abacatepay_api_base: str = "https://api.abacatepay.com/v1"
  price_id: str = ""
  product_id: str = ""
  pix_expires_in: int = 3600
  days_until_due: int = 7
  http_timeout: float = 30.0
  cors_origins: List[str] = Field(default_factory=lambda: ["*"])
  log_level: str = "INFO"


def _env(name: str, default: str = "") -> str:
  return os.getenv(name, default).strip()


def load_settings() -> Settings:
  origins = [x.strip() for x in _env("CORS_ORIGINS", "*").split(",") if x.strip()]
  return Settings(
    stripe_secret=_env("STRIPE_SECRET"),
    abacatepay_key=_env("ABACATEPAY_KEY"),
    webhook_secret=_env("WEBHOOK_SECRET_ABACATE"),
    stripe_api_base=_env("STRIPE_API_BASE", "https://api.stripe.com/v1"),
    abacatepay_api_base=_env("ABACATEPAY_API_BASE", "https://api.abacatepay.com/v1"),
    price_id=_env("STRIPE_PRICE_ID"),
    product_id=_env("STRIPE_PRODUCT_ID"),
    pix_expires_in=int(_env("PIX_EXPIRES_IN", "3600")),
    days_until_due=int(_env("INVOICE_DAYS_UNTIL_DUE", "7")),
    http_timeout=float(_env("HTTP_TIMEOUT", "30")),
    cors_origins=origins or ["*"],
    log_level=_env("LOG_LEVEL", "INFO").upper(),
  )


@lru_cache
def get_settings() -> Settings:
  return load_settings()
