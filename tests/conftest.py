import os

# Le lifespan ne doit pas tenter de joindre Redis pendant les tests
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

import copy
import pytest
from typing import Generator, Dict, Any, List, Optional
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from pme_billing.app import app as fastapi_app
from pme_billing import config
from pme_billing.errors import AuthError, ProviderError
from pme_billing.payments import providers
from pme_billing.payments.models import (
    CheckoutSession,
    OutcomeStatus,
    PaymentStatus,
    Provider,
    ProviderOutcome,
    OPEN_STATUSES,
)
from pme_billing.payments.providers.base import ProviderAdapter

PUBLIC_BASE_URL = "https://billing.example.test"

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)

@pytest.fixture(scope="session")
def app():
    return fastapi_app

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

# Configuration de test: URL publique connue, pas de secret de callback, schéma auto
@pytest.fixture(autouse=True)
def _billing_config(monkeypatch):
    monkeypatch.setattr(config, "PUBLIC_BASE_URL", PUBLIC_BASE_URL)
    monkeypatch.setattr(config, "CALLBACK_SECRET", "")
    monkeypatch.setattr(config, "SUBSCRIPTION_PERIOD_DAYS", 30)
    monkeypatch.setattr(config, "DEFAULT_CURRENCY", "XOF")
    monkeypatch.setattr(config, "SCHEMA_REQUEST_ESTIMATE_COLUMN", "auto")
    monkeypatch.setattr(config, "SCHEMA_SUPPORTS_INITIATED", "auto")
    monkeypatch.setattr(config, "SCHEMA_ENTITLEMENT_PAID_UNTIL", "auto")

# Aucun accès réseau à Supabase depuis les tests
@pytest.fixture(autouse=True)
def mock_db_dependency(monkeypatch):
    monkeypatch.setattr("pme_billing.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("pme_billing.infra.supabase_client.get_service_supabase", lambda: MagicMock())


class FakeStore:
    """
    Store en mémoire qui remplace les fonctions de pme_billing.payments.repository.
    Les transitions conditionnelles reproduisent le UPDATE ... WHERE status IN (pending, initiated).
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            "plans": [],
            "service_requests": [],
            "payments": [],
            "payment_intents": [],
            "entitlements": [],
            "subscriptions": [],
        }
        self.members: Dict[tuple, str] = {}
        self.rpc_calls: List[str] = []
        self.writes = 0
        self.supports_initiated = True
        self.fail_entitlement = False
        self.fail_snapshot = False

    # --- helpers de test ---
    def add_plan(self, code="premium", amount=15000, currency="XOF", **extra):
        row = {"id": f"plan-{code}", "code": code, "name": code.capitalize(), "monthly_price_amount": amount, "currency": currency}
        row.update(extra)
        self.tables["plans"].append(row)
        return row

    def add_member(self, business_id, user_id, role):
        self.members[(business_id, user_id)] = role

    def add_row(self, table, row):
        self.tables[table].append(copy.deepcopy(row))
        return row

    def row(self, table, ref) -> Optional[Dict[str, Any]]:
        for r in self.tables[table]:
            if str(r.get("id")) == str(ref):
                return r
        return None

    def snapshot(self):
        return copy.deepcopy(self.tables)

    # --- API du repository ---
    def get_plan_by_code(self, code):
        for r in self.tables["plans"]:
            if r.get("code") == code:
                return dict(r)
        return None

    def get_service_request(self, request_id):
        r = self.row("service_requests", request_id)
        if r is None:
            return None
        out = dict(r)
        out["estimate"] = r.get("total_estimate", r.get("total_amount"))
        return out

    def insert_payment(self, table, row):
        self.writes += 1
        self.tables[table].append(copy.deepcopy(row))
        return copy.deepcopy(row)

    def get_payment(self, table, reference):
        r = self.row(table, reference)
        return copy.deepcopy(r) if r else None

    def update_metadata(self, table, payment_id, metadata, only_open=False):
        r = self.row(table, payment_id)
        if r is None or (only_open and r.get("status") not in OPEN_STATUSES):
            return False
        self.writes += 1
        r["metadata"] = copy.deepcopy(metadata)
        return True

    def mark_initiated(self, table, payment_id, external_ref):
        r = self.row(table, payment_id)
        self.writes += 1
        r["external_ref"] = external_ref
        if self.supports_initiated:
            r["status"] = PaymentStatus.INITIATED.value
        return r["status"]

    def mark_failed(self, table, payment_id, metadata):
        r = self.row(table, payment_id)
        if r is None or r.get("status") not in OPEN_STATUSES:
            return False
        self.writes += 1
        r["status"] = PaymentStatus.FAILED.value
        r["metadata"] = copy.deepcopy(metadata)
        return True

    def claim_paid(self, table, payment_id):
        r = self.row(table, payment_id)
        if r is None or r.get("status") not in OPEN_STATUSES:
            return None
        self.writes += 1
        r["status"] = PaymentStatus.PAID.value
        return dict(r)

    def release_claim(self, table, payment_id, previous_status):
        r = self.row(table, payment_id)
        if r is not None and r.get("status") == PaymentStatus.PAID.value:
            r["status"] = previous_status

    def apply_payment_reference(self, reference):
        self.rpc_calls.append(reference)
        return None

    def get_entitlement(self, business_id):
        for r in self.tables["entitlements"]:
            if r.get("business_id") == business_id:
                return dict(r)
        return None

    def upsert_entitlement(self, row):
        if self.fail_entitlement:
            from pme_billing.errors import PersistenceError
            raise PersistenceError("Erreur de persistance (upsert_entitlement)")
        self.writes += 1
        for r in self.tables["entitlements"]:
            if r.get("business_id") == row.get("business_id"):
                r.update(row)
                return sorted(row)
        self.tables["entitlements"].append(dict(row))
        return sorted(row)

    def insert_subscription_snapshot(self, row):
        if self.fail_snapshot:
            from pme_billing.errors import PersistenceError
            raise PersistenceError("Erreur de persistance (insert_subscription_snapshot)")
        self.writes += 1
        self.tables["subscriptions"].append(dict(row))

    def get_member_role(self, business_id, user_id):
        return self.members.get((business_id, user_id))


REPOSITORY_FUNCTIONS = (
    "get_plan_by_code",
    "get_service_request",
    "insert_payment",
    "get_payment",
    "update_metadata",
    "mark_initiated",
    "mark_failed",
    "claim_paid",
    "release_claim",
    "apply_payment_reference",
    "get_entitlement",
    "upsert_entitlement",
    "insert_subscription_snapshot",
)

@pytest.fixture
def store(monkeypatch) -> FakeStore:
    fake = FakeStore()
    for name in REPOSITORY_FUNCTIONS:
        monkeypatch.setattr(f"pme_billing.payments.repository.{name}", getattr(fake, name))
    monkeypatch.setattr("pme_billing.auth.repository.get_member_role", fake.get_member_role)
    return fake


class FakeAdapter(ProviderAdapter):
    """Adaptateur de test: enregistre les requêtes, renvoie une session ou lève l'erreur configurée."""

    def __init__(self, provider: Provider):
        self.provider = provider
        self.requests = []
        self.lookups = []
        self.error: Optional[Exception] = None
        self.outcome = ProviderOutcome(status=OutcomeStatus.PAID)

    def create_checkout(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return CheckoutSession(
            url=f"https://pay.example.test/{self.provider.value}/{request.reference}",
            external_ref=f"{self.provider.value}-token-{request.reference}",
        )

    def fetch_outcome(self, external_ref):
        self.lookups.append(external_ref)
        if self.error is not None:
            raise self.error
        return self.outcome

@pytest.fixture
def fake_providers(monkeypatch) -> Dict[Provider, FakeAdapter]:
    fakes = {p: FakeAdapter(p) for p in Provider}
    for p, adapter in fakes.items():
        monkeypatch.setitem(providers.ADAPTERS, p, adapter)
    return fakes

@pytest.fixture
def failing_provider(fake_providers):
    fake_providers[Provider.PAYDUNYA].error = ProviderError("PayDunya error (500): boom")
    return fake_providers[Provider.PAYDUNYA]

# Jetons Bearer de test: "token-<user_id>" -> utilisateur <user_id>
@pytest.fixture(autouse=True)
def _fake_auth(monkeypatch):
    def _get_user_from_token(token: str) -> Dict[str, Any]:
        if not token.startswith("token-"):
            raise AuthError("Unauthorized")
        user_id = token[len("token-"):]
        return {"id": user_id, "email": f"{user_id}@example.test", "metadata": {}, "token": token}
    monkeypatch.setattr("pme_billing.auth.service.get_user_from_token", _get_user_from_token)

@pytest.fixture
def auth_headers():
    def _headers(user_id: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer token-{user_id}"}
    return _headers
