from decimal import Decimal

import pytest
import socketio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from servicehub.core import security
from servicehub.db.database import build_engine, build_sessionmaker
from servicehub.db.db_models import Base, ProfessionalProfile, Service, User, UserRole
from servicehub.services.booking_service import BookingService
from servicehub.services.budget_service import BudgetService
from servicehub.services.chat_service import ChatService
from servicehub.services.notification_service import NotificationBus, chat_room


class RecordingServer(socketio.AsyncServer):
    """A Socket.IO server with no Engine.IO transport behind it.

    Rooms are kept by the real client manager; emits are recorded per
    recipient instead of being written to a socket.
    """

    def __init__(self):
        super().__init__(async_mode="asgi")
        self.sent = []
        self.broken = False
        self.sessions = {}

    def connect_client(self, *sids):
        for sid in sids:
            if not self.manager.is_connected(sid, "/"):
                self.manager.basic_enter_room(sid, "/", None, eio_sid=f"eio-{sid}")
                self.manager.basic_enter_room(sid, "/", sid, eio_sid=f"eio-{sid}")

    async def disconnect_client(self, sid):
        await self.manager.disconnect(sid, "/")

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None,
                   namespace=None, callback=None, ignore_queue=False):
        if self.broken:
            raise ConnectionResetError("transport is gone")
        skipped = skip_sid if isinstance(skip_sid, (list, tuple, set)) else [skip_sid]
        for sid, _ in self.manager.get_participants(namespace or "/", to or room):
            if sid not in skipped:
                self.sent.append((event, data, sid))

    async def save_session(self, sid, session, namespace=None):
        self.sessions[sid] = session

    async def get_session(self, sid, namespace=None):
        return self.sessions[sid]

    def events(self, connection_id):
        return [event for event, _, sid in self.sent if sid == connection_id]

    def payloads(self, connection_id, event):
        return [data for name, data, sid in self.sent if sid == connection_id and name == event]

    def clear(self):
        self.sent.clear()


# ─── Database ────────────────────────────────────────────────────────

@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'servicehub.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ─── Bus ─────────────────────────────────────────────────────────────

@pytest.fixture
def sio():
    return RecordingServer()


@pytest.fixture
def bus(sio):
    return NotificationBus(sio)


# ─── Engines ─────────────────────────────────────────────────────────

@pytest.fixture
def chats(db, bus):
    return ChatService(db, bus)


@pytest.fixture
def budgets(db, bus):
    return BudgetService(db, bus)


@pytest.fixture
def bookings(db, bus):
    return BookingService(db, bus)


# ─── Data ────────────────────────────────────────────────────────────

@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    async def _make(role=UserRole.CLIENT, full_name=None, phone=None):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            email=f"user{n}@example.com",
            password_hash=security.get_password_hash("password123"),
            full_name=full_name or f"User {n}",
            phone=phone,
            role=role.value,
        )
        db.add(user)
        await db.flush()
        if role == UserRole.PRO:
            db.add(ProfessionalProfile(user_id=user.id))
        await db.commit()
        return user

    return _make


@pytest.fixture
async def client_user(make_user):
    return await make_user(UserRole.CLIENT, full_name="Ana Client", phone="555-0101")


@pytest.fixture
async def pro_user(make_user):
    return await make_user(UserRole.PRO, full_name="Paulo Plumber")


@pytest.fixture
def make_service(db):
    async def _make(pro, title="Pipe repair", price=None):
        profile = await db.scalar(
            select(ProfessionalProfile).where(ProfessionalProfile.user_id == pro.id)
        )
        service = Service(
            professional_id=profile.id,
            title=title,
            description=f"{title} at your place",
            price=price,
        )
        db.add(service)
        await db.commit()
        return service

    return _make


@pytest.fixture
async def service(make_service, pro_user):
    return await make_service(pro_user, price=Decimal("80.00"))


@pytest.fixture
async def sockets(sio, bus, client_user, pro_user):
    """One connected socket per personal channel."""
    sio.connect_client("client-sock", "pro-sock")
    await bus.join_client_channel("client-sock", client_user.id)
    await bus.join_professional_channel("pro-sock", pro_user.id)
    return {"client": "client-sock", "pro": "pro-sock"}


@pytest.fixture
def join_room(sio, bus):
    async def _join(chat_id, sid="room-sock"):
        sio.connect_client(sid)
        await bus.join(sid, chat_room(chat_id))
        return sid

    return _join


# ─── HTTP ────────────────────────────────────────────────────────────

@pytest.fixture
def auth_headers():
    def _headers(user):
        token = security.create_access_token(user.id, user.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
async def api(session_factory, bus):
    from servicehub.api import deps
    from servicehub.db.database import get_db
    from servicehub.main import fastapi_app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[deps.get_bus] = lambda: bus
    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    fastapi_app.dependency_overrides.clear()

