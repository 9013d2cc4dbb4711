"""Pytest fixtures and factories.

All model modules are imported through ``ecopoints.models.db`` before
``Base.metadata.create_all()`` so every mapper is configured.
"""
import io
import os
import secrets
from datetime import timedelta
from decimal import Decimal

# Test settings must be in place before the application modules read them
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///./test_ecopoints.db"
os.environ["VERIFICATION_WORKER_ENABLED"] = "false"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["MOCK_FAILURE_RATE"] = "0"
os.environ["MOCK_GATEWAY_LATENCY_MAX"] = "0"
os.environ["LOG_FILE"] = ""

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from ecopoints.main import app
from ecopoints.database import Base, SessionLocal as TestingSessionLocal, engine
from ecopoints.api import deps
from ecopoints.errors import GatewayUnavailable
from ecopoints.gateways import PayoutGateway, PayoutGatewayService, PayoutResult
from ecopoints.jobs.queue import PriorityDelayQueue
from ecopoints.models.db import CollectionPoint, Submission, User, Wallet
from ecopoints.models.db.enums import PaymentGateway, SubmissionEventType, SubmissionStatus, UserRole
from ecopoints.services import event_log
from ecopoints.services.media import MediaProber
from ecopoints.services.scoring import BYTES_PER_MB, MediaMetadata
from ecopoints.storage import InMemoryStorage
from ecopoints.utils.circuit_breaker import GATEWAY_CIRCUIT_BREAKER
from ecopoints.utils.time import utc_now

# Frame patterns (8x8 block bitmaps) far apart in perceptual-hash space
TOP_HALF_PATTERN = 0xFFFFFFFF00000000
COLUMNS_PATTERN = 0xAAAAAAAAAAAAAAAA


def make_frame(pattern: int = TOP_HALF_PATTERN, block: int = 16) -> bytes:
    """PNG whose 8x8 blocks are white where ``pattern`` has a 1 bit (MSB first)."""
    size = block * 8
    image = Image.new("L", (size, size), 0)
    for index in range(64):
        if pattern >> (63 - index) & 1:
            row, col = divmod(index, 8)
            image.paste(255, (col * block, row * block, (col + 1) * block, (row + 1) * block))
    out = io.BytesIO()
    image.convert("RGB").save(out, format="PNG")
    return out.getvalue()


def hd_metadata() -> MediaMetadata:
    # 45s, 20MB, 1080p -> auto score 90
    return MediaMetadata(duration_s=45.0, size_bytes=20 * BYTES_PER_MB, width=1920, height=1080, codec="h264")


class FakeProber(MediaProber):
    """Stands in for ffprobe / ffmpeg; scripted metadata and frame."""

    def __init__(self, metadata: MediaMetadata | None = None, frame: bytes | None = None):
        self.metadata = metadata or hd_metadata()
        self.frame = frame if frame is not None else make_frame()
        self.probe_error: Exception | None = None
        self.frame_error: Exception | None = None
        self.probed = 0

    def probe(self, data, *, timeout=None):
        self.probed += 1
        if self.probe_error is not None:
            raise self.probe_error
        return self.metadata

    def extract_frame(self, data, at_seconds, *, timeout=None):
        if self.frame_error is not None:
            raise self.frame_error
        return self.frame


class ScriptedGateway(PayoutGateway):
    """Payout gateway returning queued outcomes (a PayoutResult or an exception to raise)."""

    def __init__(self, name: str):
        self.name = name
        self.outcomes: list = []
        self.calls: list[dict] = []

    async def initiate_payout(self, amount, method, destination_ref, reference):
        self.calls.append({"amount": amount, "method": method, "destination_ref": destination_ref, "reference": reference})
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            outcome = PayoutResult(gateway_txn_id=f"{self.name}_{secrets.token_hex(6)}")
        return outcome


def unavailable(name: str = "paypal") -> GatewayUnavailable:
    return GatewayUnavailable(f"{name} is temporarily unavailable", gateway=name)


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.remove("test_ecopoints.db")
    except OSError:
        pass


@pytest.fixture(scope="session", autouse=True)
def verification_queue(create_test_db):
    """Queue on app.state for the endpoints (the production app builds it in lifespan)."""
    queue = PriorityDelayQueue()
    app.state.verification_queue = queue  # type: ignore[attr-defined]
    yield queue
    queue.shutdown()


@pytest.fixture()
def storage():
    store = InMemoryStorage()
    app.state.storage = store  # type: ignore[attr-defined]
    return store


@pytest.fixture()
def gateways():
    scripted = {gw: ScriptedGateway(gw.value) for gw in PaymentGateway}
    service = PayoutGatewayService(scripted)
    app.state.gateways = service  # type: ignore[attr-defined]
    return service


@pytest.fixture()
def prober():
    return FakeProber()


@pytest.fixture(autouse=True)
def _isolate_test_state(verification_queue, storage, gateways):  # type: ignore[unused-argument]
    """Per-test isolation for the shared single-process components and the database.

    Resets:
        - In-memory circuit breaker (failure counters / state).
        - In-memory queue contents and claims.
        - Every table, so per-user daily limits and fingerprints never leak.
    """
    verification_queue.purge()
    GATEWAY_CIRCUIT_BREAKER._states.clear()  # type: ignore[attr-defined]
    yield
    verification_queue.purge()
    GATEWAY_CIRCUIT_BREAKER._states.clear()  # type: ignore[attr-defined]
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


# Override dependency
def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


app.dependency_overrides[deps.get_db] = _override_get_db


@pytest.fixture()
def client():
    return TestClient(app)


# ---------- Data factory helpers ----------

@pytest.fixture()
def user_factory(db_session):
    def _create(role: UserRole = UserRole.TOURIST, *, points: int = 0, cash: str = "0.00", locked: str = "0.00"):
        suffix = secrets.token_hex(4)
        user = User(
            name=f"{role.value.title()} {suffix}",
            email=f"{role.value}_{suffix}@example.com",
            api_key=f"key_{secrets.token_hex(12)}",
            role=role,
        )
        db_session.add(user)
        db_session.flush()
        db_session.add(
            Wallet(
                user_id=user.id,
                points_balance=points,
                cash_balance_cents=int(Decimal(cash) * 100),
                locked_amount_cents=int(Decimal(locked) * 100),
            )
        )
        db_session.commit()
        db_session.refresh(user)
        return user
    return _create


@pytest.fixture()
def point_factory(db_session):
    def _create(latitude: float = 15.5553, longitude: float = 73.7517, *, radius_m: float = 50.0, active: bool = True, name: str | None = None):
        point = CollectionPoint(
            name=name or f"Bins {secrets.token_hex(2)}",
            latitude=latitude,
            longitude=longitude,
            radius_m=radius_m,
            active=active,
        )
        db_session.add(point)
        db_session.commit()
        db_session.refresh(point)
        return point
    return _create


@pytest.fixture()
def submission_factory(db_session, storage, point_factory):
    """Insert a submission directly in any status, with a stored video behind it."""
    def _create(user, *, point=None, status: SubmissionStatus = SubmissionStatus.QUEUED, auto_score: int | None = None, store_media: bool = True):
        point = point or point_factory()
        media_key = storage.store(b"fake-video-bytes", prefix="media", extension=".mp4") if store_media else "media/missing.mp4"
        now = utc_now()
        submission = Submission(
            user_id=user.id,
            collection_point_id=point.id,
            media_key=media_key,
            latitude=point.latitude,
            longitude=point.longitude,
            recorded_at=now - timedelta(hours=1),
            status=status,
            auto_score=auto_score,
            created_at=now,
        )
        db_session.add(submission)
        db_session.flush()
        event_log.append_event(db_session, submission.id, SubmissionEventType.CREATED, actor_id=user.id)
        db_session.commit()
        db_session.refresh(submission)
        return submission
    return _create


def auth(user) -> dict:
    return {"Authorization": f"Bearer {user.api_key}"}


@pytest.fixture()
def auth_header(user_factory):
    tourist = user_factory()
    return auth(tourist), tourist
