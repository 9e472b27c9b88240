# Overview: Pytest coverage for the HTTP API: login, voucher flow, wallet, pool and system endpoints.

import pytest

from voucherpay.extensions import db
from voucherpay.models import AuditEvent, VoucherPool

PASSWORD = "Password123!"


def _issue(client, headers, amount="50.00", bonus="10.00"):
    response = client.post('/api/vouchers', json={"amount": amount, "bonus_amount": bonus}, headers=headers)
    assert response.status_code == 201, response.get_json()
    return response.get_json()


class TestLogin:

    def test_staff_login_returns_token_and_permissions(self, db_session, client, cashier_a, tenant_a):
        response = client.post('/api/auth/staff/login', json={"username": cashier_a.username, "password": PASSWORD})

        assert response.status_code == 200
        body = response.get_json()
        assert body["token"]
        assert body["role"] == "cashier"
        assert body["tenant_id"] == tenant_a.id
        assert "voucher:write" in body["permissions"]

    def test_player_login_is_tenant_scoped(self, db_session, client, player_a, tenant_b):
        response = client.post('/api/auth/player/login', json={
            "tenant_id": tenant_b.id, "username": player_a.username, "password": PASSWORD,
        })
        assert response.status_code == 401
        assert response.get_json() == {"error": "INVALID_CREDENTIALS", "message": "Invalid credentials"}

    def test_player_login_requires_integer_tenant(self, db_session, client, player_a):
        response = client.post('/api/auth/player/login', json={
            "tenant_id": "one", "username": player_a.username, "password": PASSWORD,
        })
        assert response.status_code == 400
        assert response.get_json()["error"] == "VALIDATION"

        event = db.session.query(AuditEvent).filter_by(event_type="PLAYER_LOGIN").one()
        assert (event.success, event.reason, event.subject) == (False, "VALIDATION", player_a.username)

    def test_malformed_logins_do_not_count_toward_lockout(self, db_session, client, cashier_a):
        for _ in range(10):
            response = client.post('/api/auth/staff/login', json={"username": cashier_a.username})
            assert response.status_code == 400

        assert db.session.query(AuditEvent).filter_by(event_type="STAFF_LOGIN", success=False).count() == 10
        response = client.post('/api/auth/staff/login', json={"username": cashier_a.username, "password": PASSWORD})
        assert response.status_code == 200

    def test_wrong_password_is_audited(self, db_session, client, cashier_a):
        response = client.post('/api/auth/staff/login', json={"username": cashier_a.username, "password": "Nope123!x"})

        assert response.status_code == 401
        event = db.session.query(AuditEvent).filter_by(event_type="STAFF_LOGIN").one()
        assert event.success is False
        assert event.subject == cashier_a.username

    def test_lockout_after_repeated_failures(self, db_session, client, cashier_a):
        for _ in range(10):
            client.post('/api/auth/staff/login', json={"username": cashier_a.username, "password": "Wrong123!x"})

        response = client.post('/api/auth/staff/login', json={"username": cashier_a.username, "password": PASSWORD})
        assert response.status_code == 429
        assert response.get_json()["error"] == "ACCOUNT_LOCKED"

        status = client.get(f'/api/auth/lockout-status/{cashier_a.username}').get_json()
        assert status["locked"] is True
        assert status["failed_attempts"] >= 10

    def test_logout_revokes_token(self, db_session, client, cashier_a, staff_headers):
        headers = staff_headers(cashier_a)
        assert client.get('/api/auth/me', headers=headers).status_code == 200

        assert client.post('/api/auth/logout', headers=headers).status_code == 200
        assert client.get('/api/auth/me', headers=headers).status_code == 401

    def test_player_profile_includes_bonus_state(self, db_session, client, player_a, player_headers):
        body = client.get('/api/auth/me', headers=player_headers(player_a)).get_json()
        assert body["role"] == "player"
        assert body["bonus_state"] == {"pending_minor": 0, "unacked_minor": 0, "ack_required": False}


class TestVoucherFlow:

    def test_issue_redeem_deposit_ack(
        self, db_session, client, tenant_a, cashier_a, operator_a, player_a, staff_headers, player_headers
    ):
        staff = staff_headers(cashier_a)
        player = player_headers(player_a)

        issued = _issue(client, staff)
        assert issued["voucher"]["total_credit"] == "60.00"
        assert issued["voucher"]["status"] == "NEW"
        assert "pin" not in issued["voucher"]

        pool = client.get('/api/pool', headers=staff).get_json()
        assert pool["balance_minor"] == 94000

        redeemed = client.post('/api/vouchers/redeem', json={"code": issued["user_code"], "pin": issued["pin"]},
                               headers=player)
        assert redeemed.status_code == 200
        body = redeemed.get_json()
        assert body["wallet"]["balance_minor"] == 5000
        assert body["bonus_state"] == {"pending_minor": 1000, "unacked_minor": 0, "ack_required": False}

        again = client.post('/api/vouchers/redeem', json={"code": issued["user_code"], "pin": issued["pin"]},
                            headers=player)
        assert again.status_code == 409
        assert again.get_json() == {"error": "VOUCHER_ALREADY_REDEEMED", "message": "Voucher already redeemed"}

        deposit_url = f'/api/wallets/players/{player_a.id}/deposit'
        deposited = client.post(deposit_url, json={"amount": "10.00", "action_id": "till-1"}, headers=staff)
        assert deposited.status_code == 201
        assert len(deposited.get_json()["released_bonus_ids"]) == 1

        replay = client.post(deposit_url, json={"amount": "10.00", "action_id": "till-1"}, headers=staff)
        assert replay.status_code == 200
        assert replay.get_json()["replayed"] is True

        wallet = client.get('/api/wallets/me', headers=player).get_json()
        assert wallet["wallet"]["balance_minor"] == 7000
        assert wallet["bonus_state"]["ack_required"] is True

        ack = client.post('/api/wallets/me/bonus/ack', headers=player).get_json()
        assert (ack["acknowledged_minor"], ack["changed"]) == (1000, True)

        ledger = client.get('/api/ledger', headers=staff_headers(operator_a))
        assert ledger.status_code == 200
        assert sorted(e["event_type"] for e in ledger.get_json()["items"]) == [
            "DEPOSIT", "VOUCHER_ISSUED", "VOUCHER_REDEEMED",
        ]

    def test_wrong_pin_is_404(self, db_session, client, cashier_a, player_a, staff_headers, player_headers):
        issued = _issue(client, staff_headers(cashier_a))
        wrong = "000000" if issued["pin"] != "000000" else "111111"

        response = client.post('/api/vouchers/redeem', json={"code": issued["user_code"], "pin": wrong},
                               headers=player_headers(player_a))
        assert response.status_code == 404
        assert response.get_json()["error"] == "VOUCHER_NOT_FOUND"

    def test_staff_assisted_redeem(self, db_session, client, cashier_a, player_a, staff_headers):
        headers = staff_headers(cashier_a)
        issued = _issue(client, headers, bonus="0")

        response = client.post('/api/vouchers/redeem-for-player', headers=headers, json={
            "player_id": player_a.id, "code": issued["user_code"], "pin": issued["pin"],
        })
        assert response.status_code == 200
        assert response.get_json()["voucher"]["redeemed_by_staff_id"] == cashier_a.id

    def test_staff_assisted_redeem_requires_integer_player(self, db_session, client, cashier_a, staff_headers):
        response = client.post('/api/vouchers/redeem-for-player', headers=staff_headers(cashier_a), json={
            "player_id": "7", "code": "123456", "pin": "123456",
        })
        assert response.status_code == 400

        event = db.session.query(AuditEvent).filter_by(event_type="VOUCHER_REDEEM").one()
        assert (event.success, event.reason) == (False, "VALIDATION")
        assert "pin" not in event.meta

    def test_list_vouchers(self, db_session, client, cashier_a, staff_headers):
        headers = staff_headers(cashier_a)
        _issue(client, headers)
        _issue(client, headers, amount="5.00", bonus="0")

        body = client.get('/api/vouchers?status=NEW&limit=1', headers=headers).get_json()
        assert body["count"] == 1
        assert body["items"][0]["amount"] == "5.00"

    @pytest.mark.parametrize("payload", [
        {},
        {"amount": "abc"},
        {"amount": "1.001"},
        {"amount": "-5.00"},
        {"amount": "0"},
        {"amount": "5.00", "bonus_amount": "-1"},
        {"amount": "5.00", "expires_in_hours": -3},
    ])
    def test_invalid_issue_requests(self, db_session, client, tenant_a, cashier_a, staff_headers, payload):
        response = client.post('/api/vouchers', json=payload, headers=staff_headers(cashier_a))

        assert response.status_code == 400
        assert response.get_json()["error"] == "VALIDATION"
        assert db.session.query(VoucherPool).filter_by(tenant_id=tenant_a.id).one().balance_minor == 100000

        attempts = db.session.query(AuditEvent).filter_by(event_type="VOUCHER_ISSUE").all()
        assert len(attempts) == 1
        assert attempts[0].success is False
        assert attempts[0].reason == "VALIDATION"
        assert attempts[0].status_code == 400
        assert attempts[0].actor_id == cashier_a.id
        assert attempts[0].route == "/api/vouchers"

    def test_unparseable_tenant_on_staff_redeem_is_audited(self, db_session, client, owner, player_a, staff_headers):
        response = client.post('/api/vouchers/redeem-for-player', headers=staff_headers(owner), json={
            "player_id": player_a.id, "code": "123456", "pin": "654321", "tenant_id": "north",
        })

        assert response.status_code == 400
        event = db.session.query(AuditEvent).filter_by(event_type="VOUCHER_REDEEM").one()
        assert event.success is False
        assert event.reason == "VALIDATION"
        assert event.meta["code"] == "****56"

    def test_insufficient_pool_is_400(self, db_session, client, cashier_b, staff_headers):
        response = client.post('/api/vouchers', json={"amount": "500.01"}, headers=staff_headers(cashier_b))
        assert response.status_code == 400
        assert response.get_json()["error"] == "INSUFFICIENT_POOL_BALANCE"


class TestPoolAndTenants:

    def test_owner_funds_pool_idempotently(self, db_session, client, owner, tenant_a, staff_headers):
        headers = staff_headers(owner)
        body = {"tenant_id": tenant_a.id, "amount": "100.00", "action_id": "wire-1"}

        first = client.post('/api/pool/fund', json=body, headers=headers)
        second = client.post('/api/pool/fund', json=body, headers=headers)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.get_json()["replayed"] is True
        assert second.get_json()["pool"]["balance_minor"] == 110000

    def test_unparseable_fund_amount_is_audited(self, db_session, client, owner, tenant_a, staff_headers):
        response = client.post('/api/pool/fund', headers=staff_headers(owner), json={
            "tenant_id": tenant_a.id, "amount": "lots", "action_id": "wire-1",
        })

        assert response.status_code == 400
        event = db.session.query(AuditEvent).filter_by(event_type="POOL_FUND").one()
        assert (event.success, event.reason, event.status_code) == (False, "VALIDATION", 400)
        assert event.meta["action_id"] == "wire-1"

    @pytest.mark.parametrize("operation, audit_type", [
        ("deposit", "WALLET_DEPOSIT"),
        ("withdraw", "WALLET_WITHDRAW"),
    ])
    def test_unparseable_cash_amount_is_audited(
        self, db_session, client, cashier_a, player_a, staff_headers, operation, audit_type
    ):
        response = client.post(f'/api/wallets/players/{player_a.id}/{operation}', headers=staff_headers(cashier_a),
                               json={"amount": "1.005", "action_id": "till-9"})

        assert response.status_code == 400
        event = db.session.query(AuditEvent).filter_by(event_type=audit_type).one()
        assert (event.success, event.reason) == (False, "VALIDATION")
        assert event.meta["player_id"] == player_a.id

    def test_unparseable_tenant_on_player_create_is_audited(self, db_session, client, owner, staff_headers):
        response = client.post('/api/players', headers=staff_headers(owner), json={
            "username": "carla", "password": PASSWORD, "tenant_id": "north",
        })

        assert response.status_code == 400
        event = db.session.query(AuditEvent).filter_by(event_type="PLAYER_CREATE").one()
        assert (event.success, event.reason) == (False, "VALIDATION")

    def test_cashier_cannot_fund_pool(self, db_session, client, cashier_a, tenant_a, staff_headers):
        response = client.post('/api/pool/fund', headers=staff_headers(cashier_a), json={
            "tenant_id": tenant_a.id, "amount": "100.00", "action_id": "wire-1",
        })
        assert response.status_code == 403

    def test_owner_creates_tenant(self, db_session, client, owner, staff_headers):
        response = client.post('/api/tenants', json={"name": "East Hall", "code": "east"}, headers=staff_headers(owner))

        assert response.status_code == 201
        assert response.get_json()["code"] == "EAST"

    def test_operator_cannot_create_tenant(self, db_session, client, operator_a, staff_headers):
        response = client.post('/api/tenants', json={"name": "Rogue", "code": "ROGUE"}, headers=staff_headers(operator_a))

        assert response.status_code == 403
        assert response.get_json() == {"error": "FORBIDDEN", "message": "Access denied"}

    def test_operator_creates_player(self, db_session, client, operator_a, tenant_a, staff_headers):
        response = client.post('/api/players', headers=staff_headers(operator_a), json={
            "username": "carla", "password": PASSWORD, "display_name": "Carla",
        })

        assert response.status_code == 201
        assert response.get_json()["tenant_id"] == tenant_a.id

    def test_audit_listing(self, db_session, client, operator_a, cashier_a, staff_headers):
        _issue(client, staff_headers(cashier_a))

        body = client.get('/api/audit?event_type=VOUCHER_ISSUE&success=true',
                          headers=staff_headers(operator_a)).get_json()
        assert body["count"] == 1


class TestSystemEndpoints:

    def test_health(self, db_session, client, tenant_a):
        response = client.get('/health')

        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["details"]["tenants"] == 1

    def test_version(self, client):
        body = client.get('/version').get_json()
        assert body["api_version"] == "1.0.0"
        assert "server_time" in body

    def test_cors_header_for_allowed_origin(self, client):
        response = client.get('/version', headers={"Origin": "http://localhost:5173"})
        assert response.headers.get("Access-Control-Allow-Origin") == "http://localhost:5173"
