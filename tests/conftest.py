"""Shared test fixtures for all test modules."""

import asyncio
import contextlib
import itertools
from collections import defaultdict
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import backoffice.models  # noqa: F401
from backoffice.core import database as db_module
from backoffice.core.database import Base, get_db
from backoffice.models.coupon import Coupon, CouponStatus, DiscountType
from backoffice.models.customer import Customer
from backoffice.models.shared import utc_now
from backoffice.services.commerce_platform import (
    CodeLookup,
    DiscountCode,
    DiscountPlatformClient,
    DiscountRuleSpec,
    ExternalConflictError,
    PriceRule,
)
from backoffice.services.provisioning import RetryPolicy

# Create an in-memory SQLite engine with StaticPool so all connections
# share the same database state and there are no file-locking issues.
_test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_test_engine)


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and truncate all data after.

    Patches the module-level engine and SessionLocal so all application code
    uses the in-memory test database.
    """
    original_engine = db_module.engine
    original_session = db_module.SessionLocal
    db_module.engine = _test_engine
    db_module.SessionLocal = _TestSessionLocal

    Base.metadata.create_all(bind=_test_engine)

    yield
    with _test_engine.connect() as conn:
        conn.execute(text("PRAGMA foreign_keys = OFF"))
        for table in reversed(Base.metadata.sorted_tables):
            with contextlib.suppress(OperationalError):
                conn.execute(table.delete())
        conn.execute(text("PRAGMA foreign_keys = ON"))
        conn.commit()

    db_module.engine = original_engine
    db_module.SessionLocal = original_session


@pytest.fixture
def db_session():
    """Create a database session for testing."""
    gen = get_db()
    db = next(gen)
    try:
        yield db
    finally:
        for _ in gen:
            pass


class FakeDiscountClient(DiscountPlatformClient):
    """In-memory commerce platform.

    ``fail(method, *errors)`` queues exceptions raised by the next calls to
    *method*; ``hide_codes`` makes ``lookup_code`` miss every code, as the
    platform does before a write becomes visible. Rule titles are not unique
    on the platform; set ``unique_titles`` to make a repeated title conflict.
    """

    def __init__(self):
        self.rules: dict[str, PriceRule] = {}
        self.codes: dict[str, DiscountCode] = {}
        self.calls: list[tuple] = []
        self.failures: dict[str, list[Exception]] = defaultdict(list)
        self.hide_codes = False
        self.unique_titles = False
        self.delete_succeeds = True
        self.connected = True
        self._ids = itertools.count(1001)

    def fail(self, method: str, *errors: Exception) -> None:
        self.failures[method].extend(errors)

    def seed(self, code: str, rule_id: str = "900", code_id: str = "901") -> None:
        """Register an existing rule + code pair."""
        self.rules.setdefault(rule_id, PriceRule(id=rule_id, title=f"Discount {code} [{code}]"))
        self.codes[code] = DiscountCode(id=code_id, code=code, rule_id=rule_id)

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    async def _step(self, method: str, *args) -> None:
        self.calls.append((method, *args))
        await asyncio.sleep(0)
        if self.failures[method]:
            raise self.failures[method].pop(0)

    async def create_rule(self, spec: DiscountRuleSpec) -> PriceRule:
        await self._step("create_rule", spec.title)
        if self.unique_titles and any(rule.title == spec.title for rule in self.rules.values()):
            raise ExternalConflictError(
                "POST /price_rules.json returned 422",
                status_code=422,
                response_body={"errors": {"title": ["has already been taken"]}},
            )
        rule = PriceRule(id=str(next(self._ids)), title=spec.title, raw=spec.to_payload())
        self.rules[rule.id] = rule
        return rule

    async def find_rule_by_title(self, title: str) -> PriceRule | None:
        await self._step("find_rule_by_title", title)
        return next((rule for rule in self.rules.values() if rule.title == title), None)

    async def get_rule(self, rule_id: str) -> PriceRule | None:
        await self._step("get_rule", rule_id)
        return self.rules.get(rule_id)

    async def create_code(self, rule_id: str, code: str) -> DiscountCode:
        await self._step("create_code", rule_id, code)
        if code in self.codes:
            raise ExternalConflictError(
                "POST discount_codes.json returned 422",
                status_code=422,
                response_body={"errors": {"code": ["must be unique"]}},
            )
        created = DiscountCode(id=str(next(self._ids)), code=code, rule_id=rule_id)
        self.codes[code] = created
        return created

    async def list_codes(self, rule_id: str) -> list[DiscountCode]:
        await self._step("list_codes", rule_id)
        return [code for code in self.codes.values() if code.rule_id == rule_id]

    async def lookup_code(self, code: str) -> CodeLookup | None:
        await self._step("lookup_code", code)
        if self.hide_codes or code not in self.codes:
            return None
        found = self.codes[code]
        return CodeLookup(code_id=found.id, rule_id=found.rule_id, code=found.code)

    async def delete_rule(self, rule_id: str) -> bool:
        self.calls.append(("delete_rule", rule_id))
        if not self.delete_succeeds:
            return False
        self.rules.pop(rule_id, None)
        for code in [c for c, dc in self.codes.items() if dc.rule_id == rule_id]:
            del self.codes[code]
        return True

    async def test_connection(self) -> bool:
        return self.connected


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays and yields once."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def platform():
    return FakeDiscountClient()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def retry_policy(recording_sleep):
    return RetryPolicy(max_attempts=3, base_delay=2.0, settle_delay=1.0, sleep=recording_sleep)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_coupon(db_session):
    """Insert a customer-owned coupon directly, bypassing provisioning."""

    def _make(code: str = "SAVE20", email: str = "ana@example.com", **overrides) -> Coupon:
        customer = db_session.query(Customer).filter(Customer.email == email).first()
        if customer is None:
            customer = Customer(name="Ana", email=email)
            db_session.add(customer)
            db_session.flush()
        now = utc_now()
        values = {
            "customer_id": customer.id,
            "code": code,
            "discount_type": DiscountType.PERCENTAGE.value,
            "discount_value": Decimal("20"),
            "valid_from": now - timedelta(days=1),
            "valid_until": now + timedelta(days=30),
            "usage_limit": 1,
            "external_rule_id": "900",
            "external_code_id": "901",
            "status": CouponStatus.ACTIVE.value,
        }
        values.update(overrides)
        coupon = Coupon(**values)
        db_session.add(coupon)
        db_session.commit()
        db_session.refresh(coupon)
        return coupon

    return _make
