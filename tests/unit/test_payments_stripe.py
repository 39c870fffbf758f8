import pytest
import stripe

from pme_billing import config
from pme_billing.errors import ConfigurationError, ProviderError
from pme_billing.payments.models import CheckoutRequest, OutcomeStatus
from pme_billing.payments.providers.stripe_client import StripeAdapter, line_items_for


@pytest.fixture
def stripe_key(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "sk_test_123")


def _checkout_request(amount=5000, currency="xof"):
    return CheckoutRequest(
        amount=amount,
        currency=currency,
        description="Abonnement Pro",
        reference="22222222-2222-4222-8222-222222222222",
        callback_url="https://billing.example.test/payments_callback",
        return_url="https://billing.example.test/payments_callback?provider=stripe&ref=x&session_id={CHECKOUT_SESSION_ID}",
        cancel_url="https://billing.example.test/payments_callback?provider=stripe&ref=x&cancelled=1",
        business_id="biz-1",
    )


def test_xof_unit_amount_is_not_multiplied():
    items = line_items_for(_checkout_request(5000, "xof"))
    assert items[0]["price_data"]["unit_amount"] == 5000
    assert items[0]["price_data"]["currency"] == "xof"


def test_eur_unit_amount_in_cents():
    assert line_items_for(_checkout_request(19.99, "EUR"))[0]["price_data"]["unit_amount"] == 1999


def test_missing_key_is_configuration_error(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "")
    with pytest.raises(ConfigurationError):
        StripeAdapter().create_checkout(_checkout_request())


def test_create_checkout(monkeypatch, stripe_key):
    captured = {}

    def _fake_create(**kwargs):
        captured.update(kwargs)
        return {"id": "cs_test_1", "url": "https://checkout.stripe.com/c/pay/cs_test_1"}

    monkeypatch.setattr(stripe.checkout.Session, "create", _fake_create)
    session = StripeAdapter().create_checkout(_checkout_request())
    assert session.url == "https://checkout.stripe.com/c/pay/cs_test_1"
    assert session.external_ref == "cs_test_1"
    assert captured["mode"] == "payment"
    assert captured["client_reference_id"] == "22222222-2222-4222-8222-222222222222"
    assert captured["metadata"] == {"reference": "22222222-2222-4222-8222-222222222222", "business_id": "biz-1"}
    assert captured["success_url"].endswith("session_id={CHECKOUT_SESSION_ID}")


def test_stripe_error_is_provider_error(monkeypatch, stripe_key):
    def _fake_create(**kwargs):
        raise stripe.InvalidRequestError("Invalid currency", param="currency")

    monkeypatch.setattr(stripe.checkout.Session, "create", _fake_create)
    with pytest.raises(ProviderError) as exc:
        StripeAdapter().create_checkout(_checkout_request())
    assert exc.value.status_code == 502


@pytest.mark.parametrize("payment_status,expected", [("paid", OutcomeStatus.PAID), ("unpaid", OutcomeStatus.FAILED)])
def test_fetch_outcome(monkeypatch, stripe_key, payment_status, expected):
    monkeypatch.setattr(
        stripe.checkout.Session,
        "retrieve",
        lambda session_id: {"id": session_id, "payment_status": payment_status, "metadata": {"reference": "ref-7"}},
    )
    outcome = StripeAdapter().fetch_outcome("cs_test_1")
    assert outcome.status is expected
    assert outcome.reference == "ref-7"


def test_fetch_outcome_falls_back_to_client_reference(monkeypatch, stripe_key):
    monkeypatch.setattr(
        stripe.checkout.Session,
        "retrieve",
        lambda session_id: {"id": session_id, "payment_status": "paid", "metadata": {}, "client_reference_id": "ref-8"},
    )
    assert StripeAdapter().fetch_outcome("cs_test_1").reference == "ref-8"


def test_return_urls_keep_session_placeholder():
    ret, cancel = StripeAdapter().return_urls("https://b.test/payments_callback", "ref-1")
    assert ret == "https://b.test/payments_callback?provider=stripe&ref=ref-1&session_id={CHECKOUT_SESSION_ID}"
    assert cancel == "https://b.test/payments_callback?provider=stripe&ref=ref-1&cancelled=1"
