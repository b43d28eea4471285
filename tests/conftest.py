from datetime import timedelta
from types import SimpleNamespace

import pytest
from httpx import AsyncClient, ASGITransport

from tutorbook import create_app
from tutorbook.apis.deps import get_db, get_payment_gateway
from tutorbook.configs.settings import settings
from tutorbook.cores.db import utcnow
from tutorbook.cores.token import create_access_token
from tutorbook.models.common.role import UserRole
from tutorbook.services.bookings.booking_service import accept_booking, create_booking
from tutorbook.services.payments.payment_service import confirm_payment, initiate_payment
from tutorbook.services.user.user_service import create_user, load_actor, set_tutor_rate
from tests.fakes import A_LEVEL_RATE, GCSE_RATE, FakeGateway
from tests.test_db import init_test_db, make_override_get_db, make_session_factory, make_test_engine

@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(settings, "GATEWAY_BACKOFF_SECONDS", 0)
    monkeypatch.setattr(settings, "GATEWAY_MAX_ATTEMPTS", 3)
    monkeypatch.setattr(settings, "MAX_PAYMENT_FAILURES", 2)
    monkeypatch.setattr(settings, "HOLD_WINDOW_HOURS", 24)


@pytest.fixture
async def engine(tmp_path):
    engine = make_test_engine(tmp_path / "tutorbook_test.db")
    await init_test_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def users(db):
    await create_user(db, "parent-1", "parent@example.com", "Pat Parent", UserRole.PARENT)
    await create_user(db, "student-1", "student@example.com", "Sam Student", UserRole.STUDENT, parent_id="parent-1")
    await create_user(db, "student-2", "other.student@example.com", "Olive Student", UserRole.STUDENT)
    await create_user(db, "tutor-1", "tutor@example.com", "Tia Tutor", UserRole.TUTOR)
    await create_user(db, "tutor-2", "other.tutor@example.com", "Otto Tutor", UserRole.TUTOR)
    await create_user(db, "admin-1", "admin@example.com", "Ada Admin", UserRole.ADMIN)

    await set_tutor_rate(db, "tutor-1", "GCSE", GCSE_RATE)
    await set_tutor_rate(db, "tutor-1", "A-Level", A_LEVEL_RATE)
    await set_tutor_rate(db, "tutor-2", "GCSE", 2500)

    return SimpleNamespace(
        parent=await load_actor(db, "parent-1"),
        student=await load_actor(db, "student-1"),
        other_student=await load_actor(db, "student-2"),
        tutor=await load_actor(db, "tutor-1"),
        other_tutor=await load_actor(db, "tutor-2"),
        admin=await load_actor(db, "admin-1"),
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def now():
    return utcnow()


@pytest.fixture
def make_booking(db, users, now):
    async def _make(actor=None, hours_ahead=2, duration=60, level="GCSE", subject="Maths"):
        return await create_booking(
            db,
            actor or users.student,
            tutor_id="tutor-1",
            subject=subject,
            level=level,
            scheduled_at=now + timedelta(hours=hours_ahead),
            duration=duration,
            now=now,
        )
    return _make


@pytest.fixture
def make_confirmed_booking(db, users, gateway, make_booking, now):
    async def _make(**kwargs):
        booking = await make_booking(**kwargs)
        await accept_booking(db, users.tutor, booking.id, now=now)
        intent = await initiate_payment(db, users.student, booking.id, gateway, now=now)
        await confirm_payment(db, intent["payment_intent_id"], "succeeded", gateway=gateway, now=now)
        return booking.id, intent
    return _make


@pytest.fixture
async def client(session_factory, gateway, users):
    app = create_app()
    app.dependency_overrides[get_db] = make_override_get_db(session_factory)
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_headers():
    def _headers(actor, **extra):
        token = create_access_token({"user_id": actor.id, "role": actor.role.value})
        headers = {"Authorization": f"Bearer {token}"}
        headers.update(extra)
        return headers
    return _headers
