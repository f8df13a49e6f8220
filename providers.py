# providers.py
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import quote

import httpx
from fastapi import Depends, HTTPException

from config import Settings, get_settings
from errors import UpstreamError

logger = logging.getLogger(__name__)


def path(*parts: Any) -> str:
  """Join endpoint segments, quoting each one (ids come from request bodies)."""
  return "/".join(quote(str(p), safe="") for p in parts)


def flatten_params(data: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
  """Flatten nested params into Stripe's bracket notation.

  {"metadata": {"a": 1}} -> {"metadata[a]": "1"}
  {"items": [{"id": "si_1"}]} -> {"items[0][id]": "si_1"}
  """
  out: Dict[str, str] = {}
  for key, value in data.items():
    full_key = f"{prefix}[{key}]" if prefix else str(key)
    if isinstance(value, dict):
      out.update(flatten_params(value, full_key))
    elif isinstance(value, (list, tuple)):
      out.update(flatten_params({str(i): v for i, v in enumerate(value)}, full_key))
    elif value is None:
      continue
    elif isinstance(value, bool):
      out[full_key] = "true" if value else "false"
    else:
      out[full_key] = str(value)
  return out


@dataclass
class ProviderResponse:
  status_code: int
  body: Dict[str, Any] = field(default_factory=dict)

  @property
  def ok(self) -> bool:
    return 200 <= self.status_code < 300

  @property
  def data(self) -> list:
    items = self.body.get("data")
    return items if isinstance(items, list) else []

  def error_message(self, default: str) -> str:
    err = self.body.get("error")
    if isinstance(err, dict) and err.get("message"):
      return str(err["message"])
    if isinstance(err, str) and err:
      return err
    if err:
      return json.dumps(err)
    message = self.body.get("message")
    if isinstance(message, str) and message:
      return message
    if message:
      return json.dumps(message)
    return default


class _ProviderClient:
  name = "provider"

  def __init__(self, base_url: str, auth=None, headers=None, timeout: float = 30.0, transport=None):
    self._client = httpx.AsyncClient(
      base_url=base_url,
      auth=auth,
      headers=headers,
      timeout=timeout,
      transport=transport,
    )

  async def __aenter__(self):
    return self

  async def __aexit__(self, *exc_info):
    await self.aclose()

  async def aclose(self) -> None:
    await self._client.aclose()

  async def _send(self, method: str, endpoint: str, **kwargs) -> ProviderResponse:
    try:
      r = await self._client.request(method, endpoint, **kwargs)
    except httpx.HTTPError as exc:
      logger.error("%s %s %s failed: %s", self.name, method, endpoint, exc)
      raise UpstreamError(f"Could not reach {self.name}") from exc

    try:
      body = r.json()
    except ValueError:
      body = {"message": r.text} if r.text else {}
    if not isinstance(body, dict):
      body = {"data": body}

    if r.status_code >= 400:
      logger.warning("%s %s %s -> %s", self.name, method, endpoint, r.status_code)
    else:
      logger.debug("%s %s %s -> %s", self.name, method, endpoint, r.status_code)
    return ProviderResponse(r.status_code, body)


class StripeClient(_ProviderClient):
  """Billing provider client: basic auth, query strings for reads, form bodies for writes."""

  name = "Stripe"

  def __init__(self, secret: str, base_url: str = "https://api.stripe.com/v1", timeout: float = 30.0, transport=None):
    super().__init__(base_url, auth=httpx.BasicAuth(secret, ""), timeout=timeout, transport=transport)

  async def request(self, endpoint: str, method: str = "GET", params: Optional[Dict[str, Any]] = None) -> ProviderResponse:
    flat = flatten_params(params) if params else None
    if method == "GET":
      return await self._send(method, endpoint, params=flat)
    return await self._send(method, endpoint, data=flat)

  async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> ProviderResponse:
    return await self.request(endpoint, "GET", params)

  async def post(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> ProviderResponse:
    return await self.request(endpoint, "POST", params)


class AbacatePayClient(_ProviderClient):
  """PIX provider client: bearer token, JSON payloads."""

  name = "AbacatePay"

  def __init__(self, api_key: str, base_url: str = "https://api.abacatepay.com/v1", timeout: float = 30.0, transport=None):
    super().__init__(
      base_url,
      headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
      timeout=timeout,
      transport=transport,
    )

  async def request(self, endpoint: str, payload: Dict[str, Any]) -> ProviderResponse:
    return await self._send("POST", endpoint, json=payload)

  async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> ProviderResponse:
    return await self._send("GET", endpoint, params=params)


async def get_stripe(settings: Settings = Depends(get_settings)) -> AsyncIterator[StripeClient]:
  if not settings.stripe_secret:
    raise HTTPException(status_code=500, detail="STRIPE_SECRET is not set")
  async with StripeClient(settings.stripe_secret, settings.stripe_api_base, settings.http_timeout) as client:
    yield client


async def get_abacate(settings: Settings = Depends(get_settings)) -> AsyncIterator[AbacatePayClient]:
  if not settings.abacatepay_key:
    raise HTTPException(status_code=500, detail="ABACATEPAY_KEY is not set")
  async with AbacatePayClient(settings.abacatepay_key, settings.abacatepay_api_base, settings.http_timeout) as client:
    yield client
