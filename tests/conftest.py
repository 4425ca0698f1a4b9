"""
Pytest fixtures for the wholesale order engine test suite.

Provides:
- A database engine and tables created once per session
- Per-test sessions isolated by an outer transaction (regular tests)
- A real-commit session factory for thread-based concurrency tests
- A seeded catalog (sales rep, collections with delivery windows, SKUs)
- A fake commerce platform served through ``httpx.MockTransport``

Environment Variables:
- DATABASE_URL: database URL for the suite.  If not set, a SQLite file in
  the pytest temp directory is used.
"""

import json
import logging
import os
import re
import threading
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from wholesale_config.schema import AppConfig, PlatformSettings, ReconciliationSettings
from wholesale_integration.client import CommercePlatformClient
from wholesale_kernel.db.base import Base
from wholesale_kernel.db.engine import (
    create_tables,
    drop_tables,
    init_engine_from_url,
    reset_engine,
)
from wholesale_kernel.domain.actor import ActorContext
from wholesale_kernel.domain.clock import DeterministicClock
from wholesale_kernel.domain.dtos import Address, LineItemInput, OrderSubmission
from wholesale_kernel.domain.order_status import OrderType
from wholesale_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from wholesale_kernel.models.catalog import CatalogSku, Collection, SalesRep
from wholesale_kernel.services.decomposition_service import DecompositionService


# Test actor IDs for all test operations
TEST_ACTOR_ID = UUID("11111111-1111-1111-1111-111111111111")
CLERK_ACTOR_ID = UUID("22222222-2222-2222-2222-222222222222")

STORE_DOMAIN = "wholesale-test.myshopify.com"
API_VERSION = "2024-01"


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "concurrency: mark test as running sessions on several threads"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture wholesale logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ops):
            ops.create_order(...)
            logs = captured_logs()
            assert any(r["message"] == "order_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("wholesale")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine(tmp_path_factory):
    """Single engine for the entire test session."""
    db_url = os.environ.get("DATABASE_URL")
    if not db_url:
        db_file = tmp_path_factory.mktemp("db") / "wholesale_test.db"
        db_url = f"sqlite:///{db_file}"
    eng = init_engine_from_url(db_url, echo=False, pool_size=30, max_overflow=20)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end."""
    drop_tables()
    create_tables()
    yield
    drop_tables()


def _delete_all_rows(engine) -> None:
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection:
    - ``session.commit()`` inside the test (or inside a service's
      ``transaction()`` block) releases a savepoint only
    - ``session.rollback()`` rolls back to the last savepoint
    - at teardown the outer transaction is rolled back, undoing ALL data
      changes made during the test
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture(scope="function")
def session_factory(db_engine, db_tables):
    """Provide a tracked factory for sessions that really commit.

    For thread-based tests only; do not combine with ``session`` in the same
    test.  On teardown every tracked session is closed and all rows are
    deleted.
    """
    factory = sessionmaker(bind=db_engine, expire_on_commit=False)
    created: list[Session] = []
    lock = threading.Lock()

    def tracked_factory() -> Session:
        with lock:
            s = factory()
            created.append(s)
            return s

    yield tracked_factory

    for s in created:
        s.close()
    _delete_all_rows(db_engine)


# =============================================================================
# Time and actors
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    """Clock fixed at 2025-01-15 12:00 UTC."""
    return DeterministicClock(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def admin_actor() -> ActorContext:
    return ActorContext(actor_id=TEST_ACTOR_ID, display_name="Avery Admin", is_admin=True)


@pytest.fixture
def clerk_actor() -> ActorContext:
    """A signed-in user without operator rights."""
    return ActorContext(actor_id=CLERK_ACTOR_ID, display_name="Casey Clerk", is_admin=False)


# =============================================================================
# Catalog
# =============================================================================


@dataclass
class SeededCatalog:
    rep: SalesRep
    january: Collection
    spring: Collection
    summer: Collection
    capsule: Collection
    skus: dict[str, CatalogSku]


@pytest.fixture
def catalog(session, admin_actor) -> SeededCatalog:
    """
    A committed catalog:

    - January Delivery: immediate, 01/01/2025 - 01/31/2025
    - Spring 2025: pre-order, 03/01/2025 - 04/30/2025
    - Summer 2025: pre-order, 05/01/2025 - 06/30/2025
    - Capsule Drop: pre-order, no ship window configured
    - CORE-SOCK / CORE-CAP: no collection (CORE-CAP has no platform variant)
    """
    actor_id = admin_actor.actor_id
    rep = SalesRep(name="Dana Reyes", code="DR", email="dana@example.com", created_by_id=actor_id)
    january = Collection(
        name="January Delivery", order_type=OrderType.IMMEDIATE.value,
        window_start=date(2025, 1, 1), window_end=date(2025, 1, 31), created_by_id=actor_id,
    )
    spring = Collection(
        name="Spring 2025", order_type=OrderType.PRE_ORDER.value,
        window_start=date(2025, 3, 1), window_end=date(2025, 4, 30), created_by_id=actor_id,
    )
    summer = Collection(
        name="Summer 2025", order_type=OrderType.PRE_ORDER.value,
        window_start=date(2025, 5, 1), window_end=date(2025, 6, 30), created_by_id=actor_id,
    )
    capsule = Collection(
        name="Capsule Drop", order_type=OrderType.PRE_ORDER.value,
        window_start=None, window_end=None, created_by_id=actor_id,
    )
    session.add_all([rep, january, spring, summer, capsule])
    session.flush()

    rows = [
        ("JAN-TEE-S", "Crew Tee Small", january, "40001"),
        ("JAN-TEE-M", "Crew Tee Medium", january, "40002"),
        ("SPR-DRESS-4", "Linen Dress 4", spring, "41001"),
        ("SPR-DRESS-6", "Linen Dress 6", spring, "41002"),
        ("SUM-SHORT-M", "Canvas Short M", summer, "42001"),
        ("CAP-BAG", "Capsule Tote", capsule, "44001"),
        ("CORE-SOCK", "Everyday Sock", None, "43001"),
        ("CORE-CAP", "Logo Cap", None, None),
    ]
    skus = {}
    for sku, description, collection, variant in rows:
        skus[sku] = CatalogSku(
            sku=sku,
            description=description,
            collection_id=collection.id if collection else None,
            external_variant_id=variant,
            created_by_id=actor_id,
        )
    session.add_all(list(skus.values()))
    session.commit()
    return SeededCatalog(rep, january, spring, summer, capsule, skus)


@pytest.fixture
def make_submission(catalog):
    """
    Build an ``OrderSubmission`` from ``(sku, quantity, unit_price)`` tuples
    or ``LineItemInput`` objects.  Keyword arguments override fields.
    """

    def _make(*lines, **overrides) -> OrderSubmission:
        items = tuple(
            line if isinstance(line, LineItemInput)
            else LineItemInput(sku=line[0], quantity=line[1], unit_price=Decimal(str(line[2])))
            for line in lines
        )
        submission = OrderSubmission(
            sales_rep_id=catalog.rep.id,
            store_name="Harbor Goods",
            buyer_name="Morgan Lee",
            customer_email="buyer@harborgoods.example",
            currency="USD",
            items=items,
            billing_address=Address(
                street1="12 Pier Rd", city="Portland", state_province="ME",
                postal_code="04101", country="United States",
            ),
            shipping_address=Address(
                street1="12 Pier Rd", city="Portland", state_province="ME",
                postal_code="04101", country="United States",
            ),
            customer_phone="207-555-0100",
            requested_start=date(2025, 2, 1),
            requested_end=date(2025, 2, 15),
        )
        return replace(submission, **overrides)

    return _make


@pytest.fixture
def create_order(session, clock, admin_actor, make_submission):
    """Create and commit an order; returns its ``OrderInfo``."""

    def _create(*lines, **overrides):
        info = DecompositionService(session, clock).create_order(
            make_submission(*lines, **overrides), admin_actor,
        )
        session.commit()
        return info

    return _create


@pytest.fixture
def count_rows(session):
    """Count rows of a mapped model, optionally filtered."""

    def _count(model, *where) -> int:
        return session.execute(select(func.count()).select_from(model).where(*where)).scalar_one()

    return _count


# =============================================================================
# Commerce platform
# =============================================================================


_PATH = re.compile(r"^/admin/api/[^/]+(?P<path>/.*)$")


class FakePlatform:
    """
    In-memory commerce platform behind ``httpx.MockTransport``.

    Responses queued with ``queue()`` are served first (FIFO per method and
    path); otherwise a default handler answers like a healthy store.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.fulfillments: dict[str, list[dict]] = {}
        self.order_states: dict[str, dict] = {}
        self._queued: dict[tuple[str, str], list] = {}
        self._next_order_id = 820001
        self._next_line_id = 930001
        self._next_fulfillment_id = 610001

    def queue(self, method: str, path: str, status: int = 200, json_body=None, headers=None):
        self._queued.setdefault((method, path), []).append(
            httpx.Response(status, json=json_body if json_body is not None else {}, headers=headers)
        )

    def queue_error(self, method: str, path: str, error: type[httpx.TransportError]):
        """Raise ``error`` for the next matching request instead of answering."""
        self._queued.setdefault((method, path), []).append(error)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and self._path(r) == path]

    @staticmethod
    def body(request: httpx.Request) -> dict:
        return json.loads(request.content)

    @staticmethod
    def _path(request: httpx.Request) -> str:
        match = _PATH.match(request.url.path)
        return match.group("path") if match else request.url.path

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = self._path(request)
        queued = self._queued.get((request.method, path))
        if queued:
            answer = queued.pop(0)
            if isinstance(answer, type):
                raise answer(f"simulated {answer.__name__}", request=request)
            return answer
        return self._default(request.method, path, request)

    def _default(self, method: str, path: str, request: httpx.Request) -> httpx.Response:
        if method == "POST" and path == "/orders.json":
            order = self.body(request)["order"]
            order_id = str(self._next_order_id)
            self._next_order_id += 1
            line_items = []
            for line in order["line_items"]:
                line_items.append({
                    "id": self._next_line_id,
                    "variant_id": line["variant_id"],
                    "quantity": line["quantity"],
                })
                self._next_line_id += 1
            return httpx.Response(201, json={"order": {
                "id": int(order_id), "name": order["name"], "line_items": line_items,
            }})
        if method == "POST" and path == "/customers.json":
            return httpx.Response(201, json={"customer": {"id": 7001}})

        match = re.match(r"^/orders/(\d+)(/\w+)?\.json$", path)
        if not match:
            return httpx.Response(404, json={"errors": "Not Found"})
        order_id, action = match.group(1), match.group(2)
        state = self.order_states.setdefault(order_id, {
            "id": int(order_id),
            "cancelled_at": None,
            "closed_at": None,
            "fulfillment_status": None,
            "financial_status": "pending",
        })
        if method == "GET" and action is None:
            return httpx.Response(200, json={"order": state})
        if method == "POST" and action == "/cancel":
            state["cancelled_at"] = "2025-01-15T12:00:00Z"
            return httpx.Response(200, json={"order": state})
        if method == "POST" and action == "/close":
            state["closed_at"] = "2025-01-15T12:00:00Z"
            return httpx.Response(200, json={"order": state})
        if method == "GET" and action == "/fulfillments":
            return httpx.Response(200, json={"fulfillments": self.fulfillments.get(order_id, [])})
        if method == "POST" and action == "/fulfillments":
            fulfillment_id = self._next_fulfillment_id
            self._next_fulfillment_id += 1
            return httpx.Response(201, json={"fulfillment": {"id": fulfillment_id, "status": "success"}})
        return httpx.Response(404, json={"errors": "Not Found"})


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def platform_settings() -> PlatformSettings:
    return PlatformSettings(
        store_domain=STORE_DOMAIN,
        access_token="shpat_test_token",
        api_version=API_VERSION,
        max_attempts=3,
        backoff_base_seconds=1.0,
        backoff_max_seconds=4.0,
    )


@pytest.fixture
def sleeps() -> list[float]:
    """Records every backoff/throttle pause instead of sleeping."""
    return []


@pytest.fixture
def client(platform, platform_settings, sleeps) -> CommercePlatformClient:
    c = CommercePlatformClient(
        platform_settings,
        transport=httpx.MockTransport(platform.handler),
        sleep=sleeps.append,
    )
    yield c
    c.close()


@pytest.fixture
def app_config(platform_settings) -> AppConfig:
    return AppConfig(
        platform=platform_settings,
        reconciliation=ReconciliationSettings(order_delay_seconds=0.0, rate_limit_pause_seconds=0.0),
    )


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def random_id() -> UUID:
    return uuid4()
