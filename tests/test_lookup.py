def seat_subscription(sub_id="sub_1", status="active", quantity=2):
  return {
    "id": sub_id,
    "status": status,
    "current_period_start": 1700000000,
    "current_period_end": 1702592000,
    "items": {"data": [{"id": "si_1", "quantity": quantity, "price": {"id": "price_seat"}}]},
  }


def invoice(inv_id, status="open", created=1, subscription="sub_1", **extra):
  body = {
    "id": inv_id,
    "status": status,
    "amount_due": 5000,
    "amount_paid": 0,
    "customer": "cus_1",
    "subscription": subscription,
    "created": created,
    "hosted_invoice_url": f"https://pay.test/{inv_id}",
  }
  body.update(extra)
  return body


def stub_catalog(stripe_api):
  stripe_api.on("GET", "prices/price_seat", {"id": "price_seat", "unit_amount": 2500, "product": "prod_seat"})
  stripe_api.on("GET", "products/prod_seat", {"id": "prod_seat", "name": "Licença"})


def test_invalid_email_is_rejected_without_upstream_calls(client, stripe_api):
  r = client.post("/api/stripe", json={"email": "nobody"})
  assert r.status_code == 400
  assert stripe_api.calls == []


def test_unknown_customer_is_404_with_offer(client, stripe_api):
  stripe_api.on("GET", "customers", {"data": []})
  stub_catalog(stripe_api)

  r = client.post("/api/stripe", json={"email": " A@B.com "})

  assert r.status_code == 404
  body = r.json()
  assert body["customer_exists"] is False
  assert body["email"] == "a@b.com"
  assert body["available_product"] == {"id": "prod_seat", "name": "Licença", "price_id": "price_seat"}
  assert stripe_api.called("GET", "customers")[0].params["email"] == "a@b.com"


def test_groups_invoices_by_subscription(client, stripe_api):
  stripe_api.on("GET", "customers", {"data": [{"id": "cus_1", "email": "a@b.com", "name": "Ana", "created": 10}]})
  stripe_api.on("GET", "invoices", {"data": [
    invoice("in_old", status="paid", created=100),
    invoice("in_new", status="open", created=300, metadata={"abacate_pix_id": "pix_9"}),
    invoice("in_loose", status="open", created=200, subscription=None),
  ]})
  stripe_api.on("GET", "subscriptions", {"data": [seat_subscription()]})
  stub_catalog(stripe_api)

  r = client.post("/api/stripe", json={"email": "a@b.com"})

  assert r.status_code == 200
  body = r.json()
  assert body["customer"] == {"id": "cus_1", "email": "a@b.com", "name": "Ana"}
  assert body["has_subscriptions"] is True
  assert body["available_product"] is None
  assert body["totals"] == {"total_invoices": 3, "open_invoices": 2}

  sub, loose = body["subscriptions"]
  assert sub["id"] == "sub_1"
  assert sub["product_name"] == "Licença"
  assert sub["unit_amount"] == 2500
  assert sub["subscription_item_id"] == "si_1"
  assert sub["current_quantity"] == 2
  assert [i["invoice_id"] for i in sub["invoices"]] == ["in_new", "in_old"]
  newest = sub["invoices"][0]
  assert newest["can_generate_pix"] is True
  assert newest["status_label"] == "Em Aberto"
  assert newest["abacate_pix_id"] == "pix_9"

  assert loose["id"] == "no_subscription"
  assert [i["invoice_id"] for i in loose["invoices"]] == ["in_loose"]


def test_without_subscriptions_everything_is_loose(client, stripe_api):
  stripe_api.on("GET", "customers", {"data": [{"id": "cus_1", "email": "a@b.com"}]})
  stripe_api.on("GET", "invoices", {"data": [invoice("in_1", subscription=None), invoice("in_2", subscription="sub_gone", created=5)]})
  stripe_api.on("GET", "subscriptions", {"data": []})
  stub_catalog(stripe_api)

  body = client.post("/api/stripe", json={"email": "a@b.com"}).json()

  assert [s["id"] for s in body["subscriptions"]] == ["no_subscription"]
  assert [i["invoice_id"] for i in body["subscriptions"][0]["invoices"]] == ["in_2", "in_1"]
  assert body["has_subscriptions"] is False
  assert body["available_product"]["id"] == "prod_seat"


def test_duplicate_emails_pick_most_recent_customer(client, stripe_api):
  stripe_api.on("GET", "customers", {"data": [
    {"id": "cus_old", "email": "a@b.com", "created": 100},
    {"id": "cus_new", "email": "a@b.com", "created": 900},
  ]})
  stripe_api.on("GET", "invoices", {"data": []})
  stripe_api.on("GET", "subscriptions", {"data": []})
  stub_catalog(stripe_api)

  body = client.post("/api/stripe", json={"email": "a@b.com"}).json()

  assert body["customer"]["id"] == "cus_new"
  assert stripe_api.called("GET", "invoices")[0].params["customer"] == "cus_new"


def test_canceled_subscription_without_invoices_is_hidden(client, stripe_api):
  stripe_api.on("GET", "customers", {"data": [{"id": "cus_1", "email": "a@b.com"}]})
  stripe_api.on("GET", "invoices", {"data": []})
  stripe_api.on("GET", "subscriptions", {"data": [seat_subscription("sub_x", status="canceled")]})
  stub_catalog(stripe_api)

  body = client.post("/api/stripe", json={"email": "a@b.com"}).json()

  assert body["subscriptions"] == []


def test_upstream_failure_is_500_with_provider_message(client, stripe_api):
  stripe_api.on("GET", "customers", {"error": {"message": "Invalid API Key provided"}}, status=401)

  r = client.post("/api/stripe", json={"email": "a@b.com"})

  assert r.status_code == 500
  assert r.json()["detail"] == "Invalid API Key provided"
