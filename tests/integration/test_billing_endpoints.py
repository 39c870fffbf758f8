import pytest

from pme_billing.payments.models import Provider


@pytest.fixture
def business(store):
    store.add_plan("premium", amount=15000, currency="XOF")
    store.add_plan("pro", amount=5000, currency="XOF")
    store.add_member("biz-1", "owner-1", "owner")
    store.add_member("biz-1", "customer-1", "customer")
    store.add_row("service_requests", {
        "id": "req-1", "business_id": "biz-1", "customer_user_id": "customer-1", "total_estimate": 7500, "currency": "XOF",
    })
    return store


def test_billing_subscribe_success(client, business, fake_providers, auth_headers):
    r = client.post("/billing_subscribe", json={"business_id": "biz-1", "plan_code": "pro", "provider": "PAYDUNYA"}, headers=auth_headers("owner-1"))
    assert r.status_code == 200
    body = r.json()
    [payment] = business.tables["payments"]
    assert body == {"payment_url": f"https://pay.example.test/paydunya/{payment['id']}", "ref": payment["id"]}
    assert payment["status"] == "initiated"


def test_billing_subscribe_requires_bearer(client, business, fake_providers):
    r = client.post("/billing_subscribe", json={"business_id": "biz-1", "plan_code": "pro"})
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthorized"}


def test_billing_subscribe_validation_before_auth(client, business, fake_providers):
    r = client.post("/billing_subscribe", json={"plan_code": "pro"})
    assert r.status_code == 400
    assert r.json() == {"error": "business_id is required"}


def test_billing_subscribe_invalid_json(client, business, auth_headers):
    r = client.post("/billing_subscribe", content=b"{oops", headers={**auth_headers("owner-1"), "Content-Type": "application/json"})
    assert r.status_code == 400
    assert "error" in r.json()


def test_billing_subscribe_unsupported_provider(client, business, auth_headers):
    r = client.post("/billing_subscribe", json={"business_id": "biz-1", "plan_code": "pro", "provider": "paypal"}, headers=auth_headers("owner-1"))
    assert r.status_code == 400
    assert r.json() == {"error": "Unsupported provider"}


def test_billing_subscribe_customer_forbidden(client, business, fake_providers, auth_headers):
    r = client.post("/billing_subscribe", json={"business_id": "biz-1", "plan_code": "premium"}, headers=auth_headers("customer-1"))
    assert r.status_code == 403
    assert business.tables["payments"] == []


def test_billing_subscribe_unknown_plan(client, business, fake_providers, auth_headers):
    r = client.post("/billing_subscribe", json={"business_id": "biz-1", "plan_code": "gold"}, headers=auth_headers("owner-1"))
    assert r.status_code == 400
    assert r.json() == {"error": "Plan inconnu"}


def test_billing_subscribe_provider_failure(client, business, failing_provider, auth_headers):
    r = client.post("/billing_subscribe", json={"business_id": "biz-1", "plan_code": "premium"}, headers=auth_headers("owner-1"))
    assert r.status_code == 502
    assert r.json() == {"error": "Paiement indisponible. Réessaie dans un instant."}
    assert business.tables["payments"][0]["status"] == "failed"


def test_create_payment_intent_customer(client, business, fake_providers, auth_headers):
    r = client.post("/create_payment_intent", json={"request_id": "req-1", "provider": "stripe"}, headers=auth_headers("customer-1"))
    assert r.status_code == 200
    [intent] = business.tables["payment_intents"]
    assert r.json()["ref"] == intent["id"]
    assert intent["amount"] == 7500
    assert fake_providers[Provider.STRIPE].requests[0].amount == 7500.0


def test_create_payment_intent_amount_type(client, business, fake_providers, auth_headers):
    r = client.post("/create_payment_intent", json={"request_id": "req-1", "amount": "lots"}, headers=auth_headers("owner-1"))
    assert r.status_code == 400
    assert r.json() == {"error": "amount must be a number"}


def test_create_payment_intent_forbidden(client, business, fake_providers, auth_headers):
    r = client.post("/create_payment_intent", json={"request_id": "req-1"}, headers=auth_headers("stranger"))
    assert r.status_code == 403


def test_security_headers(client, business, fake_providers, auth_headers):
    r = client.post("/billing_subscribe", json={"business_id": "biz-1", "plan_code": "pro"}, headers=auth_headers("owner-1"))
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["Cache-Control"] == "no-store"
