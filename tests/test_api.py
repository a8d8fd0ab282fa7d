"""
HTTP flow: signup -> service -> budget request -> pricing -> chat -> booking.
"""
from datetime import datetime, timedelta, timezone

from servicehub.db.db_models import UserRole

API = "/api/v1"


async def _signup(api, email, role, full_name):
    resp = await api.post(f"{API}/auth/signup", json={
        "email": email,
        "password": "password123",
        "full_name": full_name,
        "role": role,
    })
    assert resp.status_code == 201, resp.text
    body = resp.json()
    return body["user"], {"Authorization": f"Bearer {body['token']['access_token']}"}


async def test_health(api):
    resp = await api.get(f"{API}/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


async def test_signup_and_login(api):
    await _signup(api, "maria@example.com", "CLIENT", "Maria")

    resp = await api.post(f"{API}/auth/signup", json={
        "email": "maria@example.com", "password": "x", "full_name": "Again",
    })
    assert resp.status_code == 409

    resp = await api.post(f"{API}/auth/login/json", json={
        "email": "maria@example.com", "password": "password123",
    })
    assert resp.status_code == 200
    assert resp.json()["token_type"] == "bearer"

    resp = await api.post(f"{API}/auth/login/json", json={
        "email": "maria@example.com", "password": "wrong",
    })
    assert resp.status_code == 400


async def test_negotiation_and_booking_flow(api, sio, bus):
    client, client_headers = await _signup(api, "client@example.com", "CLIENT", "Carla Client")
    pro, pro_headers = await _signup(api, "pro@example.com", "PRO", "Pedro Pro")
    sio.connect_client("pro-sock", "client-sock")
    await bus.join_professional_channel("pro-sock", pro["id"])
    await bus.join_client_channel("client-sock", client["id"])

    # ─── Service catalog ─────────────────────────────────────
    resp = await api.post(f"{API}/services/", headers=pro_headers, json={
        "title": "Garden cleanup", "description": "Mowing and trimming",
    })
    assert resp.status_code == 201, resp.text
    service_id = resp.json()["id"]

    resp = await api.post(f"{API}/services/", headers=client_headers, json={
        "title": "Nope", "description": "Clients cannot sell",
    })
    assert resp.status_code == 403

    # ─── Budget request ──────────────────────────────────────
    resp = await api.post(f"{API}/budgets/request", headers=client_headers, json={
        "professional_id": pro["id"], "service_id": service_id,
    })
    assert resp.status_code == 201, resp.text
    budget = resp.json()
    assert budget["status"] == "PENDING"
    assert budget["price"] == "0"
    assert budget["chat"]["service_title"] == "Garden cleanup"
    chat_id = budget["chat_id"]
    assert sio.events("pro-sock") == ["new-chat"]

    resp = await api.get(
        f"{API}/budgets/service/{service_id}/client/{client['id']}/pending",
        headers=pro_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["id"] == budget["id"]

    # ─── Pricing ─────────────────────────────────────────────
    resp = await api.post(f"{API}/budgets", headers=pro_headers, json={
        "chat_id": chat_id, "service_id": service_id, "price": "250", "description": "Whole yard",
    })
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "ACCEPTED"
    assert resp.json()["price"] == "250.00"
    assert sio.events("client-sock") == ["new-budget"]

    resp = await api.get(
        f"{API}/budgets/service/{service_id}/client/{client['id']}", headers=client_headers
    )
    assert resp.status_code == 200
    assert resp.json()["id"] == budget["id"]

    resp = await api.patch(f"{API}/budgets/{budget['id']}/accept", headers=client_headers)
    assert resp.status_code == 409
    assert resp.json()["code"] == "ConflictException"

    resp = await api.get(f"{API}/chats/{chat_id}/budgets", params={"status": "ACCEPTED"},
                         headers=client_headers)
    assert [b["id"] for b in resp.json()] == [budget["id"]]

    # ─── Chat ────────────────────────────────────────────────
    resp = await api.post(f"{API}/chats/{chat_id}/messages", headers=client_headers, json={
        "content": "See you Saturday",
    })
    assert resp.status_code == 201, resp.text
    assert resp.json()["sender"]["full_name"] == "Carla Client"

    resp = await api.get(f"{API}/chats/user/{pro['id']}", headers=pro_headers)
    assert resp.status_code == 200
    [item] = resp.json()
    assert item["id"] == chat_id
    assert item["unread_count"] == 1
    assert item["budget"]["status"] == "ACCEPTED"
    assert item["last_message"]["content"] == "See you Saturday"

    resp = await api.patch(f"{API}/chats/{chat_id}/messages/read", headers=pro_headers)
    assert resp.json() == {"success": True, "updated": 1}

    resp = await api.get(f"{API}/chats/{chat_id}/messages", headers=pro_headers)
    assert [m["is_read"] for m in resp.json()] == [True]

    # ─── Booking ─────────────────────────────────────────────
    when = (datetime.now(timezone.utc) + timedelta(days=3)).isoformat()
    resp = await api.post(f"{API}/bookings/", headers=client_headers, json={
        "professional_id": pro["id"], "service_id": service_id, "scheduled_at": when,
        "address": "Av. Paulista 1000",
    })
    assert resp.status_code == 201, resp.text
    booking = resp.json()
    assert booking["status"] == "REQUESTED"
    assert booking["professional"]["full_name"] == "Pedro Pro"
    assert "new-booking-offer" in sio.events("pro-sock")

    resp = await api.get(f"{API}/bookings/pending", headers=pro_headers)
    assert [b["id"] for b in resp.json()] == [booking["id"]]

    resp = await api.patch(f"{API}/bookings/{booking['id']}/accept", headers=client_headers)
    assert resp.status_code == 403

    resp = await api.patch(f"{API}/bookings/{booking['id']}/accept", headers=pro_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "ACCEPTED"
    assert "booking-accepted" in sio.events("client-sock")


async def test_auth_and_role_boundaries(api, make_user, auth_headers):
    resp = await api.get(f"{API}/bookings/mine")
    assert resp.status_code == 401

    resp = await api.get(f"{API}/bookings/mine", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 401

    pro = await make_user(UserRole.PRO)
    resp = await api.post(f"{API}/budgets/request", headers=auth_headers(pro), json={
        "professional_id": pro.id, "service_id": "whatever",
    })
    assert resp.status_code == 403

    resp = await api.get(f"{API}/bookings/pending", headers=auth_headers(await make_user()))
    assert resp.status_code == 403


async def test_domain_errors_are_structured(api, make_user, auth_headers):
    user = await make_user()

    resp = await api.get(f"{API}/budgets/no-such-budget", headers=auth_headers(user))

    assert resp.status_code == 404
    body = resp.json()
    assert body["detail"] == "Budget not found"
    assert body["code"] == "NotFoundException"
    assert body["details"] == {"budget_id": "no-such-budget"}


async def test_budget_reads_are_limited_to_participants(
    api, budgets, make_user, auth_headers, client_user, pro_user, service
):
    budget = await budgets.request_budget(client_user.id, pro_user.id, service.id)
    stranger = auth_headers(await make_user())
    other_pro = auth_headers(await make_user(UserRole.PRO))
    lookup = f"{API}/budgets/service/{service.id}/client/{client_user.id}"

    for headers in (stranger, other_pro):
        assert (await api.get(f"{API}/budgets/{budget.id}", headers=headers)).status_code == 403
        resp = await api.get(f"{API}/chats/{budget.chat_id}/budgets", headers=headers)
        assert resp.status_code == 403
        for suffix in ("", "/pending", "/with-price"):
            assert (await api.get(lookup + suffix, headers=headers)).status_code == 403

    for headers in (auth_headers(client_user), auth_headers(pro_user)):
        resp = await api.get(f"{API}/budgets/{budget.id}", headers=headers)
        assert resp.status_code == 200
        resp = await api.get(f"{API}/chats/{budget.chat_id}/budgets", headers=headers)
        assert [b["id"] for b in resp.json()] == [budget.id]
        resp = await api.get(lookup + "/pending", headers=headers)
        assert resp.json()["id"] == budget.id
