from datetime import timedelta

import pytest

from tutorbook.configs.settings import settings
from tutorbook.cores.token import create_access_token
from tests.fakes import GCSE_RATE, webhook_payload


def _booking_body(now, **overrides):
    body = {
        "tutor_id": "tutor-1",
        "subject": "Maths",
        "level": "GCSE",
        "scheduled_at": (now + timedelta(hours=3)).isoformat(),
        "duration": 60,
    }
    body.update(overrides)
    return body


async def _create(client, auth_headers, actor, now, **overrides):
    response = await client.post("/api/bookings/", json=_booking_body(now, **overrides), headers=auth_headers(actor))
    assert response.status_code == 201, response.text
    return response.json()["data"]


# ==================== AUTENTICACIÓN ====================

@pytest.mark.asyncio
async def test_missing_token(client, now):
    response = await client.post("/api/bookings/", json=_booking_body(now))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_token_role_must_match_user(client, now):
    token = create_access_token({"user_id": "student-1", "role": "admin"})
    response = await client.get("/api/bookings/", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["code"] == "InvalidToken"


@pytest.mark.asyncio
async def test_unknown_user_and_bad_signature(client):
    token = create_access_token({"user_id": "ghost", "role": "student"})
    response = await client.get("/api/bookings/", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401

    response = await client.get("/api/bookings/", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


# ==================== RESERVAS ====================

@pytest.mark.asyncio
async def test_create_and_read_booking(client, users, auth_headers, now):
    data = await _create(client, auth_headers, users.student, now)

    assert data["status"] == "pending"
    assert data["price"] == GCSE_RATE
    assert data["payment_failure_count"] == 0
    assert "decline_reason" not in data
    assert "meeting_link" not in data

    response = await client.get(f"/api/bookings/{data['id']}", headers=auth_headers(users.parent))
    assert response.status_code == 200
    assert response.json()["data"]["id"] == data["id"]

    response = await client.get(f"/api/bookings/{data['id']}", headers=auth_headers(users.other_tutor))
    assert response.status_code == 403
    assert response.json() == {
        "success": False,
        "detail": "You do not have access to this booking",
        "code": "Unauthorized",
    }

    response = await client.get("/api/bookings/9999", headers=auth_headers(users.admin))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_create_validation_errors(client, users, auth_headers, now):
    too_soon = (now + timedelta(minutes=30)).isoformat()
    response = await client.post(
        "/api/bookings/", json=_booking_body(now, scheduled_at=too_soon), headers=auth_headers(users.student),
    )
    assert response.status_code == 422
    assert response.json()["code"] == "ValidationError"

    response = await client.post(
        "/api/bookings/", json=_booking_body(now, subject="Chemistry"), headers=auth_headers(users.student),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_parent_must_name_student(client, users, auth_headers, now):
    response = await client.post("/api/bookings/", json=_booking_body(now), headers=auth_headers(users.parent))
    assert response.status_code == 422

    data = await _create(client, auth_headers, users.parent, now, student_id="student-1")
    assert data["student_id"] == "student-1"


@pytest.mark.asyncio
async def test_parent_cannot_accept(client, users, auth_headers, now):
    data = await _create(client, auth_headers, users.student, now)
    response = await client.post(f"/api/bookings/{data['id']}/accept", headers=auth_headers(users.parent))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_accept_shows_hold_window(client, users, auth_headers, now):
    data = await _create(client, auth_headers, users.student, now)

    response = await client.post(
        f"/api/bookings/{data['id']}/accept", headers=auth_headers(users.tutor, **{"If-Match": '"1"'}),
    )
    assert response.status_code == 200
    accepted = response.json()["data"]
    assert accepted["status"] == "accepted"
    assert accepted["version"] == 2
    assert accepted["accepted_at"] is not None
    assert accepted["hold_expires_at"] is not None

    # Segunda aceptación: estado inválido
    response = await client.post(f"/api/bookings/{data['id']}/accept", headers=auth_headers(users.tutor))
    assert response.status_code == 409
    assert response.json()["code"] == "InvalidTransition"


@pytest.mark.asyncio
async def test_stale_if_match_is_conflict(client, users, auth_headers, now):
    data = await _create(client, auth_headers, users.student, now)
    await client.post(f"/api/bookings/{data['id']}/accept", headers=auth_headers(users.tutor))

    response = await client.post(
        f"/api/bookings/{data['id']}/cancel", headers=auth_headers(users.admin, **{"If-Match": "1"}),
    )
    assert response.status_code == 409
    assert response.json()["code"] == "StaleState"

    response = await client.post(
        f"/api/bookings/{data['id']}/cancel", headers=auth_headers(users.admin, **{"If-Match": "soon"}),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_decline_and_list(client, users, auth_headers, now):
    data = await _create(client, auth_headers, users.student, now)

    response = await client.post(
        f"/api/bookings/{data['id']}/decline", json={"reason": "nope"}, headers=auth_headers(users.tutor),
    )
    assert response.status_code == 422

    response = await client.post(
        f"/api/bookings/{data['id']}/decline",
        json={"reason": "Not teaching GCSE this term"},
        headers=auth_headers(users.tutor),
    )
    assert response.status_code == 200
    declined = response.json()["data"]
    assert declined["status"] == "declined"
    assert declined["decline_reason"] == "Not teaching GCSE this term"
    assert "payment_error" not in declined

    response = await client.get("/api/bookings/", params={"status": "declined"}, headers=auth_headers(users.parent))
    assert [b["id"] for b in response.json()["data"]] == [data["id"]]

    response = await client.get("/api/bookings/", params={"status": "lost"}, headers=auth_headers(users.parent))
    assert response.status_code == 422


# ==================== PAGOS ====================

@pytest.mark.asyncio
async def test_full_flow_over_http(client, users, gateway, auth_headers, now):
    data = await _create(client, auth_headers, users.student, now)
    await client.post(f"/api/bookings/{data['id']}/accept", headers=auth_headers(users.tutor))

    response = await client.post(
        "/api/payments/create-intent", json={"booking_id": data["id"]}, headers=auth_headers(users.student),
    )
    assert response.status_code == 200
    intent = response.json()["data"]
    assert intent["amount"] == GCSE_RATE

    response = await client.post(
        "/api/payments/create-intent", json={"booking_id": data["id"]}, headers=auth_headers(users.student),
    )
    assert response.status_code == 409
    assert response.json()["code"] == "PaymentAlreadyActive"

    payload = webhook_payload("payment_intent.succeeded", intent["payment_intent_id"], intent["payment_id"])
    response = await client.post(
        "/api/payments/webhook", content=payload, headers={"Stripe-Signature": "valid-signature"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "succeeded"

    response = await client.get(f"/api/bookings/{data['id']}", headers=auth_headers(users.student))
    confirmed = response.json()["data"]
    assert confirmed["status"] == "confirmed"
    assert confirmed["is_paid"] is True
    assert confirmed["payment_intent_id"] == intent["payment_intent_id"]
    assert confirmed["meeting_link"].startswith(settings.MEETING_BASE_URL)
    assert confirmed["reschedule_request"] is None

    response = await client.get("/api/payments/history", headers=auth_headers(users.parent))
    assert [p["status"] for p in response.json()["data"]] == ["succeeded"]


@pytest.mark.asyncio
async def test_webhook_with_bad_signature(client):
    payload = webhook_payload("payment_intent.succeeded", "pi_unknown")
    response = await client.post("/api/payments/webhook", content=payload, headers={"Stripe-Signature": "forged"})
    assert response.status_code == 400
    assert response.json()["code"] == "InvalidWebhook"


@pytest.mark.asyncio
async def test_gateway_outage_is_bad_gateway(client, users, gateway, auth_headers, now):
    data = await _create(client, auth_headers, users.student, now)
    await client.post(f"/api/bookings/{data['id']}/accept", headers=auth_headers(users.tutor))
    gateway.fail_times = 10

    response = await client.post(
        "/api/payments/create-intent", json={"booking_id": data["id"]}, headers=auth_headers(users.student),
    )
    assert response.status_code == 502

    response = await client.get(f"/api/bookings/{data['id']}", headers=auth_headers(users.student))
    pending = response.json()["data"]
    assert pending["status"] == "pending"
    assert pending["payment_error"] == "Card network unavailable"


@pytest.mark.asyncio
async def test_cancel_paid_booking_refunds(client, users, gateway, auth_headers, make_confirmed_booking):
    booking_id, intent = await make_confirmed_booking(hours_ahead=5)

    response = await client.post(
        f"/api/bookings/{booking_id}/cancel",
        json={"reason": "Exam moved to this afternoon"},
        headers=auth_headers(users.student),
    )
    assert response.status_code == 200
    cancelled = response.json()["data"]
    assert cancelled["status"] == "cancelled"
    assert cancelled["cancelled_by"] == "student-1"
    assert cancelled["is_paid"] is False
    assert gateway.refunds == [intent["payment_intent_id"]]

    response = await client.post(f"/api/payments/{intent['payment_id']}/refund", headers=auth_headers(users.admin))
    assert response.status_code == 409


# ==================== REAGENDADO Y REPORTE ====================

@pytest.mark.asyncio
async def test_reschedule_over_http(client, users, auth_headers, make_confirmed_booking, now):
    booking_id, _ = await make_confirmed_booking()
    new_time = (now + timedelta(hours=5)).isoformat()

    response = await client.post(
        f"/api/bookings/{booking_id}/reschedule",
        json={"new_scheduled_at": new_time},
        headers=auth_headers(users.student),
    )
    assert response.status_code == 200
    request = response.json()["data"]["reschedule_request"]
    assert request["requested_by"] == "student-1"
    assert request["requester_role"] == "student"

    response = await client.post(
        f"/api/bookings/{booking_id}/reschedule",
        json={"new_scheduled_at": new_time},
        headers=auth_headers(users.tutor),
    )
    assert response.status_code == 409
    assert response.json()["code"] == "RescheduleAlreadyPending"

    response = await client.post(
        f"/api/bookings/{booking_id}/reschedule/respond",
        json={"approve": True},
        headers=auth_headers(users.student),
    )
    assert response.status_code == 403

    response = await client.post(
        f"/api/bookings/{booking_id}/reschedule/respond",
        json={"approve": True},
        headers=auth_headers(users.tutor),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Reschedule approved"
    assert body["data"]["reschedule_request"] is None


@pytest.mark.asyncio
async def test_lesson_report_too_early(client, users, auth_headers, make_confirmed_booking):
    booking_id, _ = await make_confirmed_booking()
    response = await client.post(
        f"/api/bookings/{booking_id}/lesson-report",
        json={"topics_covered": "Simultaneous equations"},
        headers=auth_headers(users.tutor),
    )
    assert response.status_code == 409
    assert response.json()["code"] == "InvalidBookingState"


# ==================== CRON Y NOTIFICACIONES ====================

@pytest.mark.asyncio
async def test_cron_requires_secret(client):
    response = await client.post("/api/cron/expire-holds")
    assert response.status_code == 401

    response = await client.post("/api/cron/expire-holds", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 401

    response = await client.post(
        "/api/cron/expire-holds", headers={"Authorization": f"Bearer {settings.CRON_SECRET}"},
    )
    assert response.status_code == 200
    assert response.json()["data"] == {"expired": 0}

    response = await client.post(
        "/api/cron/dispatch-events", headers={"Authorization": f"Bearer {settings.CRON_SECRET}"},
    )
    assert response.status_code == 200
    assert response.json()["data"] == {"delivered": 0}


@pytest.mark.asyncio
async def test_notifications_endpoints(client, users, auth_headers, now):
    await _create(client, auth_headers, users.student, now)

    response = await client.get("/api/notifications/mis-notificaciones", headers=auth_headers(users.tutor))
    assert response.status_code == 200
    [notification] = response.json()["data"]
    assert notification["type"] == "create"

    response = await client.put(
        f"/api/notifications/marcar-leida/{notification['id']}", headers=auth_headers(users.student),
    )
    assert response.status_code == 404

    response = await client.put(
        f"/api/notifications/marcar-leida/{notification['id']}", headers=auth_headers(users.tutor),
    )
    assert response.status_code == 200
    assert response.json()["success"] is True
