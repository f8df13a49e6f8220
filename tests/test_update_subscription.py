import pytest

REQUEST = {"subscription_id": "sub_1", "subscription_item_id": "si_1"}


def subscription(quantity):
  return {
    "id": "sub_1",
    "customer": "cus_1",
    "items": {"data": [{"id": "si_1", "quantity": quantity, "price": {"id": "price_seat", "currency": "brl"}}]},
  }


def stub_upgrade(stripe_api, current=2):
  stripe_api.on("GET", "subscriptions/sub_1", subscription(current))
  stripe_api.on("POST", "invoices/create_preview", {
    "currency": "brl",
    "amount_due": 9000,
    "lines": {"data": [
      {"description": "Unused time on 2 seats", "amount": -3000, "parent": {"subscription_item_details": {"proration": True}}},
      {"description": "Remaining time on 5 seats", "amount": 7500, "parent": {"subscription_item_details": {"proration": True}}},
      {"description": "5 seats (next period)", "amount": 12500, "parent": {"subscription_item_details": {"proration": False}}},
    ]},
  })
  stripe_api.on("GET", "invoices", {"data": [
    {"id": "in_open_1", "status": "open", "amount_due": 5000},
    {"id": "in_open_2", "status": "open", "amount_due": 1000},
  ]})
  stripe_api.on("POST", "invoices/in_open_1/void", {"id": "in_open_1", "status": "void"})
  stripe_api.on("POST", "invoices/in_open_2/void", {"error": {"message": "cannot void"}}, status=400)
  stripe_api.on("POST", "subscription_items/si_1", {"id": "si_1", "quantity": 5})
  stripe_api.on("POST", "invoiceitems", {"id": "ii_1"})
  stripe_api.on("POST", "invoices", {"id": "in_new", "status": "draft", "amount_due": 4500})
  stripe_api.on("POST", "invoices/in_new/finalize", {
    "id": "in_new",
    "status": "open",
    "amount_due": 4500,
    "hosted_invoice_url": "https://pay.test/in_new",
  })
  stripe_api.on("POST", "invoices/in_new/send", {"id": "in_new"})


@pytest.mark.parametrize("body", [
  {"subscription_item_id": "si_1", "new_quantity": 2},
  {"subscription_id": "sub_1", "new_quantity": 2},
  {**REQUEST, "new_quantity": 0},
  {**REQUEST, "new_quantity": "many"},
])
def test_validation(client, stripe_api, body):
  r = client.post("/api/update-subscription", json=body)
  assert r.status_code == 400
  assert stripe_api.calls == []


def test_same_quantity_is_a_noop(client, stripe_api):
  stripe_api.on("GET", "subscriptions/sub_1", subscription(3))

  body = client.post("/api/update-subscription", json={**REQUEST, "new_quantity": 3}).json()

  assert body["changed"] is False
  assert stripe_api.posts() == []


def test_unknown_item_is_an_error(client, stripe_api):
  stripe_api.on("GET", "subscriptions/sub_1", subscription(3))

  r = client.post("/api/update-subscription", json={**REQUEST, "subscription_item_id": "si_other", "new_quantity": 4})

  assert r.status_code == 500
  assert stripe_api.posts() == []


def test_upgrade_voids_then_bills_one_prorated_invoice(client, stripe_api):
  stub_upgrade(stripe_api)

  r = client.post("/api/update-subscription", json={**REQUEST, "new_quantity": 5})

  assert r.status_code == 200
  body = r.json()
  assert body["is_upgrade"] is True
  assert body["changed"] is True
  assert body["previous_quantity"] == 2
  assert body["new_quantity"] == 5
  assert body["voided_invoices"] == [{"id": "in_open_1", "amount_due": 5000}]
  assert body["invoice"] == {
    "id": "in_new",
    "status": "open",
    "amount_due": 4500,
    "hosted_invoice_url": "https://pay.test/in_new",
  }

  paths = [c.path for c in stripe_api.posts()]
  assert paths.index("/v1/invoices/in_open_1/void") < paths.index("/v1/subscription_items/si_1")
  assert paths.index("/v1/invoices/in_open_2/void") < paths.index("/v1/subscription_items/si_1")
  assert len(stripe_api.called("POST", "invoices")) == 1

  update = stripe_api.called("POST", "subscription_items/si_1")[0].form
  assert update == {"quantity": "5", "proration_behavior": "none"}

  preview = stripe_api.called("POST", "invoices/create_preview")[0].form
  assert preview["subscription_details[items][0][quantity]"] == "5"
  assert preview["subscription_details[proration_behavior]"] == "always_invoice"

  item = stripe_api.called("POST", "invoiceitems")[0].form
  assert item["amount"] == "4500"
  assert item["subscription"] == "sub_1"

  assert stripe_api.called("GET", "invoices")[0].params["status"] == "open"


def test_downgrade_never_voids_or_invoices(client, stripe_api):
  stripe_api.on("GET", "subscriptions/sub_1", subscription(5))
  stripe_api.on("POST", "subscription_items/si_1", {"id": "si_1", "quantity": 2})

  body = client.post("/api/update-subscription", json={**REQUEST, "new_quantity": 2}).json()

  assert body["is_upgrade"] is False
  assert body["invoice"] is None
  assert body["voided_invoices"] == []
  assert [c.path for c in stripe_api.posts()] == ["/v1/subscription_items/si_1"]
  assert stripe_api.called("GET", "invoices") == []


def test_failed_quantity_update_is_reported(client, stripe_api):
  stripe_api.on("GET", "subscriptions/sub_1", subscription(5))
  stripe_api.on("POST", "subscription_items/si_1", {"error": {"message": "Subscription is canceled"}}, status=400)

  r = client.post("/api/update-subscription", json={**REQUEST, "new_quantity": 2})

  assert r.status_code == 500
  assert r.json()["detail"] == "Subscription is canceled"


def assert_nothing_changed(stripe_api):
  paths = [c.path for c in stripe_api.posts()]
  assert paths == ["/v1/invoices/create_preview"]
  assert stripe_api.called("POST", "subscription_items/si_1") == []
  assert stripe_api.called("POST", "invoices") == []


def test_upgrade_aborts_when_preview_fails(client, stripe_api):
  stub_upgrade(stripe_api)
  stripe_api.on("POST", "invoices/create_preview", {"error": {"message": "preview unavailable"}}, status=400)

  r = client.post("/api/update-subscription", json={**REQUEST, "new_quantity": 5})

  assert r.status_code == 500
  assert_nothing_changed(stripe_api)


@pytest.mark.parametrize("preview", [
  {"currency": "brl", "amount_due": 0, "lines": {"data": []}},
  {"currency": "brl", "amount_due": 0, "lines": {"data": [
    {"description": "Unused time on 2 seats", "amount": -3000, "parent": {"subscription_item_details": {"proration": True}}},
  ]}},
])
def test_upgrade_aborts_without_a_positive_proration(client, stripe_api, preview):
  stub_upgrade(stripe_api)
  stripe_api.on("POST", "invoices/create_preview", preview)

  r = client.post("/api/update-subscription", json={**REQUEST, "new_quantity": 5})

  assert r.status_code == 500
  assert_nothing_changed(stripe_api)
