# booking-engine/tests/conftest.py
import sys
from pathlib import Path
from typing import List, Optional

# --- Part 1: Path Setup ---
# Must run before any application import so the flat packages (engine, db, ...)
# resolve from the repo root.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


# --- Part 2: Environment Loading ---
from dotenv import load_dotenv
load_dotenv(REPO_ROOT / ".env.local")
load_dotenv(REPO_ROOT / ".env")


# --- Part 3: Application Imports ---
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from common.config_loader import EngineSettings
from common.models import (
    AddressComponents,
    AddressConfidence,
    AddressValidation,
    BookingRecord,
    CalendarResult,
    CalendarSlot,
    NotificationResult,
)
from constants.flow_defs import build_default_flow
from constants.types import Flow, Step
from db.models import init_db
from db.session import make_engine
from engine.state import ConversationState


# --- Part 4: Fakes for the collaborators ---

class FakeGeocoder:
    """Returns a fixed validation, or raises when told to."""

    def __init__(self, result: Optional[AddressValidation] = None, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls: List[str] = []

    async def validate(self, raw_address, *, tenant_id=None, enabled=True):
        self.calls.append(raw_address)
        if self.error is not None:
            raise self.error
        if self.result is None:
            return AddressValidation.skipped_result(raw_address, "fake")
        return self.result


class FakeCalendar:
    def __init__(self, slots: Optional[List[CalendarSlot]] = None, error: Optional[Exception] = None):
        self.slots = slots or []
        self.error = error
        self.calls = 0

    async def find_available_slots(self, tenant_id, date_from=None, service_type=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        if not self.slots:
            return CalendarResult.fallback_result("no_availability")
        return CalendarResult(slots=self.slots)


class FakeNotifier:
    def __init__(self):
        self.sent: List[BookingRecord] = []

    async def send_booking_confirmation(self, tenant_id, booking):
        self.sent.append(booking)
        return NotificationResult(success=True, method="sms", message_id="SM-test")


def validated(formatted: str, *, city="Austin", state="TX", needs_unit=False,
              confidence=AddressConfidence.HIGH) -> AddressValidation:
    return AddressValidation(
        success=True,
        validated=True,
        confidence=confidence,
        normalized=formatted,
        formatted_address=formatted,
        components=AddressComponents(city=city, state=state),
        needs_unit=needs_unit,
    )


# --- Part 5: Core fixtures ---

@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def default_flow() -> Flow:
    return build_default_flow("acme")


@pytest.fixture
def simple_flow() -> Flow:
    """name -> phone -> address, the smallest realistic booking flow."""
    return Flow(
        flow_id="acme_booking",
        tenant_id="acme",
        steps=(
            Step(id="name", field_key="name", type="name", label="Name", order=1,
                 prompt="May I have your name, please?",
                 reprompt="I didn't quite catch that. Could you tell me your name?"),
            Step(id="phone", field_key="phone", type="phone", label="Phone", order=2,
                 prompt="And what's the best phone number to reach you?",
                 reprompt="Can you repeat your phone number?"),
            Step(id="address", field_key="address", type="address", label="Address", order=3,
                 prompt="What is the service address?",
                 reprompt="Can you say the address one more time?"),
        ),
    )


@pytest.fixture
def state() -> ConversationState:
    return ConversationState(tenant_id="acme")


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """
    A clean SQLite database (aiosqlite) per test, schema created.
    Disposed of after the test.
    """
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'calendar.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker:
    return async_sessionmaker(db_engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session
