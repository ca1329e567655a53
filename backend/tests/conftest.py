"""
Pytest configuration and shared test helpers for backend tests.

Resolver and API tests run against in-memory implementations of the store
contracts; store tests mock the Motor database directly.
"""
import copy
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure backend root is on path
backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from fastapi.testclient import TestClient

from auth import create_access_token
from server import app
from services.account_store import AccountStore
from services.config_resolver import ConfigResolver
from services.config_store import ConfigStore
from services.entitlement_resolver import EntitlementResolver
from services.errors import NotFoundError
from services.role_store import RoleStore
from services.template_registry import BUILTIN_TEMPLATES, TemplateRegistry, TemplateStore


# ============================================
# In-memory stores
# ============================================

class InMemoryAccountStore(AccountStore):

    def __init__(self, accounts=None):
        self.accounts = {a["id"]: dict(a) for a in (accounts or [])}

    async def get_account(self, account_id):
        if account_id not in self.accounts:
            raise NotFoundError(f"Account not found: {account_id}", {"account_id": account_id})
        return dict(self.accounts[account_id])

    def set_plan(self, account_id, plano):
        self.accounts[account_id]["plano"] = plano


class InMemoryRoleStore(RoleStore):

    def __init__(self, roles=None):
        self.roles = {k: set(v) for k, v in (roles or {}).items()}

    async def get_roles(self, account_id):
        return set(self.roles.get(account_id, set()))

    async def add_role(self, account_id, role):
        held = self.roles.setdefault(account_id, set())
        created = role not in held
        held.add(role)
        return created

    async def remove_role(self, account_id, role):
        held = self.roles.get(account_id, set())
        removed = role in held
        held.discard(role)
        return removed


class InMemoryConfigStore(ConfigStore):

    def __init__(self, records=None):
        self.records = {r["corretor_id"]: copy.deepcopy(r) for r in (records or [])}
        self.writes = 0

    async def get_config(self, account_id):
        record = self.records.get(account_id)
        return copy.deepcopy(record) if record else None

    async def upsert_config(self, account_id, fields):
        now = datetime.now(timezone.utc)
        record = self.records.get(account_id)
        if record is None:
            record = {"id": str(uuid.uuid4()), "corretor_id": account_id, "created_at": now}
            self.records[account_id] = record
        record.update(copy.deepcopy(fields))
        record["updated_at"] = now
        self.writes += 1
        return copy.deepcopy(record)


class InMemoryTemplateStore(TemplateStore):

    def __init__(self, templates=None):
        self.templates = [copy.deepcopy(t) for t in (templates if templates is not None else BUILTIN_TEMPLATES)]

    async def list_templates(self, active_only=True):
        rows = [t for t in self.templates if t.get("ativo", True) or not active_only]
        return sorted(copy.deepcopy(rows), key=lambda t: t.get("ordem") or 0)

    async def seed_templates(self, templates):
        by_id = {t["id"]: i for i, t in enumerate(self.templates)}
        for template in templates:
            if template["id"] in by_id:
                self.templates[by_id[template["id"]]] = copy.deepcopy(template)
            else:
                self.templates.append(copy.deepcopy(template))


# ============================================
# Fixtures
# ============================================

ACCOUNTS = [
    {"id": "broker-start", "nome": "Ana Start", "slug": "ana", "plano": "lobby_start", "ativo": True},
    {"id": "broker-pro", "nome": "Bruno Pro", "slug": "bruno", "plano": "lobby_pro", "ativo": True},
    {"id": "broker-authority", "nome": "Carla Authority", "slug": "carla", "plano": "lobby_authority", "ativo": True},
    {"id": "partner-pro", "nome": "Diego Partner", "slug": "diego", "plano": "partner_pro", "ativo": True},
    {"id": "broker-noplan", "nome": "Eva Sem Plano", "slug": "eva", "plano": None, "ativo": True},
    {"id": "broker-badplan", "nome": "Fabio Legado", "slug": "fabio", "plano": "PLAN_GOLD", "ativo": True},
    {"id": "admin-1", "nome": "Admin", "slug": "admin", "plano": "lobby_authority", "ativo": True},
]

ROLES = {
    "broker-start": {"corretor"},
    "broker-pro": {"corretor"},
    "broker-authority": {"corretor"},
    "partner-pro": {"corretor"},
    "admin-1": {"admin", "corretor"},
}


@pytest.fixture
def account_store():
    return InMemoryAccountStore(ACCOUNTS)


@pytest.fixture
def role_store():
    return InMemoryRoleStore(ROLES)


@pytest.fixture
def config_store():
    return InMemoryConfigStore()


@pytest.fixture
def template_store():
    return InMemoryTemplateStore()


@pytest.fixture
def template_registry(template_store):
    return TemplateRegistry(template_store)


@pytest.fixture
def entitlement_resolver(account_store, role_store):
    return EntitlementResolver(account_store=account_store, role_store=role_store)


@pytest.fixture
def config_resolver(config_store, template_registry, entitlement_resolver):
    return ConfigResolver(
        config_store=config_store,
        template_registry=template_registry,
        entitlement_resolver=entitlement_resolver,
    )


@pytest.fixture
def client(role_store, entitlement_resolver, config_resolver):
    """TestClient for server:app wired to the in-memory stores (no MongoDB, no lifespan)."""
    app.state.db = None
    app.state.role_store = role_store
    app.state.entitlement_resolver = entitlement_resolver
    app.state.config_resolver = config_resolver
    return TestClient(app)


def auth_headers(account_id):
    return {"Authorization": f"Bearer {create_access_token({'sub': account_id})}"}
