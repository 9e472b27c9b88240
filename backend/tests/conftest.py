"""
Pytest fixtures for voucherpay backend tests.

Provides an on-disk SQLite database per test session, tenants with funded
pools, staff users for every role, players, tenant contexts and bearer
headers for the test client.
"""

import pytest

from voucherpay import create_app
from voucherpay.extensions import db
from voucherpay.models import Player, StaffUser, Tenant, VoucherPool
from voucherpay.services.auth_service import hash_password
from voucherpay.services.tenant_service import (
    ACTOR_PLAYER,
    PLAYER_ROLE,
    build_tenant_context,
)


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    db_path = tmp_path_factory.mktemp("db") / "voucherpay_test.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
        'BCRYPT_ROUNDS': 4,
        'DEFAULT_CURRENCY': 'FUN',
        'VOUCHER_EXPIRY_HOURS': None,
        'BONUS_TRIGGER_BALANCE_MINOR': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Empty every table before each test."""
    db.session.remove()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.remove()


def _make_tenant(session, name, code, pool_minor):
    tenant = Tenant(name=name, code=code, is_active=True)
    session.add(tenant)
    session.flush()
    if pool_minor is not None:
        session.add(VoucherPool(tenant_id=tenant.id, balance_minor=pool_minor, currency="FUN"))
    session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Tenant A with a pool of 100000 minor units."""
    return _make_tenant(db_session, "Tenant A - North Hall", "NORTH", 100000)


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Tenant B with a pool of 50000 minor units."""
    return _make_tenant(db_session, "Tenant B - South Hall", "SOUTH", 50000)


@pytest.fixture(scope='function')
def make_staff(db_session):
    """Factory: make_staff(role, tenant, username=None, permissions=None)."""
    def _make(role, tenant, username=None, permissions=None, is_active=True):
        staff = StaffUser(
            tenant_id=tenant.id if tenant is not None else None,
            username=username or f"{role}_{tenant.code.lower() if tenant else 'global'}",
            email=None,
            password_hash=hash_password(PASSWORD),
            role=role,
            permissions=permissions or [],
            is_active=is_active,
        )
        db_session.add(staff)
        db_session.commit()
        return staff
    return _make


@pytest.fixture(scope='function')
def owner(make_staff):
    """Global owner (no tenant)."""
    return make_staff("owner", None, username="owner")


@pytest.fixture(scope='function')
def operator_a(make_staff, tenant_a):
    return make_staff("operator", tenant_a)


@pytest.fixture(scope='function')
def cashier_a(make_staff, tenant_a):
    return make_staff("cashier", tenant_a)


@pytest.fixture(scope='function')
def cashier_b(make_staff, tenant_b):
    return make_staff("cashier", tenant_b)


@pytest.fixture(scope='function')
def subagent_a(make_staff, tenant_a):
    return make_staff("subagent", tenant_a)


@pytest.fixture(scope='function')
def make_player(db_session):
    """Factory: make_player(tenant, username)."""
    def _make(tenant, username):
        player = Player(
            tenant_id=tenant.id,
            username=username,
            display_name=username.title(),
            password_hash=hash_password(PASSWORD),
            is_active=True,
        )
        db_session.add(player)
        db_session.commit()
        return player
    return _make


@pytest.fixture(scope='function')
def player_a(make_player, tenant_a):
    return make_player(tenant_a, "alice")


@pytest.fixture(scope='function')
def player_b(make_player, tenant_b):
    return make_player(tenant_b, "bruno")


@pytest.fixture(scope='function')
def staff_ctx():
    """Factory: TenantContext for a staff user, optionally naming a tenant."""
    def _ctx(staff, requested_tenant_id=None):
        return build_tenant_context(
            role=staff.role,
            actor_tenant_id=staff.tenant_id,
            actor_id=staff.id,
            requested_tenant_id=requested_tenant_id,
        )
    return _ctx


@pytest.fixture(scope='function')
def player_ctx():
    """Factory: TenantContext for a player."""
    def _ctx(player):
        return build_tenant_context(
            role=PLAYER_ROLE,
            actor_tenant_id=player.tenant_id,
            actor_id=player.id,
            actor_type=ACTOR_PLAYER,
        )
    return _ctx


@pytest.fixture(scope='function')
def staff_headers(client):
    """Factory: bearer headers for a staff user via the login endpoint."""
    def _headers(staff):
        response = client.post('/api/auth/staff/login', json={
            'username': staff.username,
            'password': PASSWORD,
        })
        assert response.status_code == 200, response.get_json()
        return {'Authorization': f"Bearer {response.get_json()['token']}"}
    return _headers


@pytest.fixture(scope='function')
def player_headers(client):
    """Factory: bearer headers for a player via the login endpoint."""
    def _headers(player):
        response = client.post('/api/auth/player/login', json={
            'tenant_id': player.tenant_id,
            'username': player.username,
            'password': PASSWORD,
        })
        assert response.status_code == 200, response.get_json()
        return {'Authorization': f"Bearer {response.get_json()['token']}"}
    return _headers
