import httpx
import pytest
from fastapi.testclient import TestClient

from config import Settings, get_settings
from main import app
from providers import AbacatePayClient, StripeClient, get_abacate, get_stripe
from tests.fakes import PIX_BASE, STRIPE_BASE, FakeProvider


@pytest.fixture
def settings():
  return Settings(
    stripe_secret="sk_test_123",
    abacatepay_key="abc_test_123",
    webhook_secret="s3cret",
    stripe_api_base=STRIPE_BASE,
    abacatepay_api_base=PIX_BASE,
    price_id="price_seat",
    product_id="prod_seat",
  )


@pytest.fixture
def stripe_api():
  return FakeProvider()


@pytest.fixture
def pix_api():
  return FakeProvider()


@pytest.fixture
def client(settings, stripe_api, pix_api):
  async def fake_stripe():
    async with StripeClient(settings.stripe_secret, STRIPE_BASE, transport=httpx.MockTransport(stripe_api)) as c:
      yield c

  async def fake_abacate():
    async with AbacatePayClient(settings.abacatepay_key, PIX_BASE, transport=httpx.MockTransport(pix_api)) as c:
      yield c

  app.dependency_overrides[get_settings] = lambda: settings
  app.dependency_overrides[get_stripe] = fake_stripe
  app.dependency_overrides[get_abacate] = fake_abacate
  with TestClient(app) as c:
    yield c
  app.dependency_overrides.clear()
