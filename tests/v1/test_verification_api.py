# tests/v1/test_verification_api.py
import base64
import json
import time

from eth_account import Account

from conftest import SERVER_ID, SUBJECT_ID
from rolegate.core.rules import AssetHolding
from rolegate.models import AssignmentStatus
from rolegate.repositories.assignment_repo import RoleAssignmentRepository


def _issue(client, operator_headers, **body):
    payload = {"subject_id": SUBJECT_ID, **body}
    response = client.post("/api/v1/verification/challenge", json=payload, headers=operator_headers)
    assert response.status_code == 201, response.text
    return response.json()


def _wire(ticket):
    return ticket.model_dump(by_alias=True)


def test_challenge_requires_operator_token(client):
    response = client.post("/api/v1/verification/challenge", json={"subject_id": SUBJECT_ID})
    assert response.status_code in {401, 403}

    bad = client.post(
        "/api/v1/verification/challenge",
        json={"subject_id": SUBJECT_ID},
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert bad.status_code == 401


def test_challenge_returns_nonce_and_expiry(client, operator_headers, nonce_manager):
    before = int(time.time())
    body = _issue(client, operator_headers, message_id="msg-1", channel_id="chan-1")

    assert body["expiry"] >= before + nonce_manager.ttl_seconds
    check = nonce_manager.consume(SUBJECT_ID, body["nonce"])
    assert check.valid
    assert check.context.message_id == "msg-1"


def test_challenge_remembers_reply_target(client, operator_headers, reply_store):
    body = _issue(client, operator_headers, reply_token="interaction-token")

    target = reply_store.pop(body["nonce"])
    assert target is not None
    assert target.interaction_token == "interaction-token"


def test_verify_signature_success(client, operator_headers, make_ticket, sign_ticket, add_rule, assets, wallet, db_session):
    add_rule("role-apes", slug="apes", role_name="Ape Holder")
    assets.give(wallet.address, AssetHolding("apes"))
    ticket = make_ticket(_issue(client, operator_headers)["nonce"])

    response = client.post(
        "/api/v1/verification/verify-signature",
        json={"data": _wire(ticket), "signature": sign_ticket(ticket)},
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    assert body["address"] == wallet.address
    assert body["assigned_roles"] == ["role-apes"]
    row = RoleAssignmentRepository(db_session).get(SUBJECT_ID, SERVER_ID, "role-apes")
    assert row.assignment_status is AssignmentStatus.ACTIVE


def test_verify_signature_accepts_base64_positional_array(
    client, operator_headers, make_ticket, sign_ticket, add_rule, assets, wallet
):
    add_rule("role-apes", slug="apes")
    assets.give(wallet.address, AssetHolding("apes"))
    ticket = make_ticket(_issue(client, operator_headers)["nonce"])
    array = [
        ticket.subject_id,
        ticket.subject_tag,
        None,
        ticket.server_id,
        ticket.server_name,
        None,
        "",
        "",
        ticket.nonce,
        ticket.expiry_unix_seconds,
    ]
    encoded = base64.b64encode(json.dumps(array).encode()).decode()

    response = client.post(
        "/api/v1/verification/verify-signature",
        json={"data": encoded, "signature": sign_ticket(ticket), "address": wallet.address},
    )

    assert response.status_code == 200, response.text
    assert response.json()["assigned_roles"] == ["role-apes"]


def test_stale_nonce_is_rejected(client, operator_headers, make_ticket, sign_ticket, add_rule):
    add_rule("role-apes", slug="apes")
    stale = make_ticket(_issue(client, operator_headers)["nonce"])
    _issue(client, operator_headers)

    response = client.post(
        "/api/v1/verification/verify-signature",
        json={"data": _wire(stale), "signature": sign_ticket(stale)},
    )

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "nonce_invalid_or_expired"


def test_error_codes_disambiguate_failures(client, operator_headers, make_ticket, sign_ticket, add_rule):
    ticket = make_ticket(_issue(client, operator_headers)["nonce"])
    forged = client.post(
        "/api/v1/verification/verify-signature",
        json={"data": _wire(ticket), "signature": sign_ticket(ticket, account=Account.create())},
    )
    assert forged.status_code == 401
    assert forged.json()["detail"]["code"] == "signature_mismatch"

    ticket = make_ticket(_issue(client, operator_headers)["nonce"])
    no_rules = client.post(
        "/api/v1/verification/verify-signature",
        json={"data": _wire(ticket), "signature": sign_ticket(ticket)},
    )
    assert no_rules.status_code == 404
    assert no_rules.json()["detail"]["code"] == "no_applicable_rules"

    add_rule("role-apes", slug="apes")
    ticket = make_ticket(_issue(client, operator_headers)["nonce"])
    poor = client.post(
        "/api/v1/verification/verify-signature",
        json={"data": _wire(ticket), "signature": sign_ticket(ticket)},
    )
    assert poor.status_code == 403
    assert poor.json()["detail"]["code"] == "insufficient_holdings"

    ticket = make_ticket(_issue(client, operator_headers)["nonce"], expiry_unix_seconds=int(time.time()) - 5)
    expired = client.post(
        "/api/v1/verification/verify-signature",
        json={"data": _wire(ticket), "signature": sign_ticket(ticket)},
    )
    assert expired.status_code == 400
    assert expired.json()["detail"]["code"] == "verification_expired"


def test_malformed_ticket_is_rejected(client):
    response = client.post(
        "/api/v1/verification/verify-signature",
        json={"data": "%%%not-base64%%%", "signature": "0x00"},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "invalid_ticket"


def test_reverify_endpoints_return_reports(client, operator_headers, db_session, add_rule, platform):
    rule = add_rule("role-apes", slug="apes")
    from rolegate.services.assignments import RoleAssignmentTracker

    RoleAssignmentTracker(db_session).activate(
        subject_id=SUBJECT_ID, server_id=SERVER_ID, role_id="role-apes", rule_id=rule.id
    )
    platform.members.add((SUBJECT_ID, SERVER_ID))

    response = client.post(f"/api/v1/verification/reverify/{SUBJECT_ID}", headers=operator_headers)
    assert response.status_code == 200, response.text
    assert response.json()["revoked"] == 1

    response = client.post("/api/v1/verification/reverify", headers=operator_headers)
    assert response.status_code == 200
    assert response.json()["checked"] == 0

    assert client.post("/api/v1/verification/reverify").status_code in {401, 403}


def test_assignment_stats(client, operator_headers):
    response = client.get("/api/v1/system/assignments/stats", headers=operator_headers)
    assert response.status_code == 200
    assert response.json() == {"active": 0, "expired": 0, "revoked": 0}


def test_public_config_exposes_eip712_domain(client):
    response = client.get("/api/v1/system/config")
    assert response.status_code == 200
    assert response.json()["eip712"] == {"name": "verethfier", "version": "1", "chainId": 1}


def test_health_and_root(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/").status_code == 200


def test_minted_operator_token_is_accepted(client):
    from rolegate.scripts.operator_token import create_operator_token

    token = create_operator_token("bot", ttl_seconds=60)
    response = client.get("/api/v1/system/assignments/stats", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
