import io
import zipfile

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import orderdesk.models  # noqa: F401  register mappers
from orderdesk.db.base import Base
from orderdesk.services.events import EventBus
from orderdesk.services.ledger.service import LedgerService
from orderdesk.services.pricing.service import invalidate_tariff_cache
from orderdesk.storage.memory import InMemoryStorage


class RecordingSink:
    def __init__(self):
        self.batches = []

    def send(self, notifications):
        self.batches.append(list(notifications))

    @property
    def notifications(self):
        return [n for batch in self.batches for n in batch]


class FailingSink:
    def __init__(self):
        self.calls = 0

    def send(self, notifications):
        self.calls += 1
        raise RuntimeError("push gateway down")


class RecordingBus(EventBus):
    def __init__(self):
        super().__init__()
        self.emitted = []

    def emit(self, event):
        self.emitted.append(event)
        super().emit(event)

    def of_type(self, event_type):
        return [e for e in self.emitted if isinstance(e, event_type)]


def make_zip(files: dict[str, bytes | str]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buf.getvalue()


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'orderdesk.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def _fresh_tariff_cache():
    invalidate_tariff_cache()
    yield
    invalidate_tariff_cache()


@pytest.fixture
def bus():
    return RecordingBus()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def site_zip():
    return make_zip({"index.html": "<html><body>ok</body></html>", "css/style.css": "body{}"})


@pytest.fixture
def make_team(db, bus):
    def _make(balance="100", credit_limit="0", name="Alpha"):
        return LedgerService(db, bus).create_team(
            name, credit_limit=credit_limit, created_by="admin-1", opening_balance=balance
        )

    return _make
