"""
Pytest configuration and shared fixtures for the produce ledger.

Every test gets its own connection-level transaction on one in-memory
SQLite engine; the session joins it with ``create_savepoint`` so facade
commits only release savepoints and the whole test is rolled back at
teardown.
"""

import json
import logging
from collections.abc import Generator
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

from produce_config.schema import AggregateSettings, LedgerSettings
from produce_kernel.db.engine import build_engine, create_tables
from produce_kernel.domain.clock import DeterministicClock
from produce_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from produce_kernel.models.product import Product
from produce_kernel.services.trade_recorder import LineDraft
from produce_services import InventoryLedgerService

# DeterministicClock's default "today"
TODAY = date(2024, 6, 15)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow (property-based runs)"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
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
    Capture produce_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.record_purchase(...)
            logs = captured_logs()
            assert any(r["message"] == "record_purchase_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("produce_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    engine = build_engine("sqlite:///:memory:")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session(db_engine) -> Generator[Session, None, None]:
    """Per-test session joined to an outer transaction rolled back at teardown."""
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


# Clock fixtures


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing (today = 2024-06-15)."""
    return DeterministicClock()


# =============================================================================
# Reference data
# =============================================================================


@pytest.fixture
def create_product(session: Session):
    """Factory for products; reference data normally owned by the catalogue."""

    def _create(code: str | None = None, unit_weight: Decimal | None = Decimal("10")):
        code = code or f"P-{uuid4().hex[:8]}"
        product = Product(code=code, name=f"Product {code}", unit_weight=unit_weight)
        session.add(product)
        session.flush()
        return product

    return _create


@pytest.fixture
def apple(create_product):
    return create_product("APPLE")


@pytest.fixture
def pear(create_product):
    return create_product("PEAR", unit_weight=Decimal("5"))


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def ledger(session: Session, deterministic_clock) -> InventoryLedgerService:
    """Facade with the test owning the outer transaction."""
    return InventoryLedgerService(
        session,
        deterministic_clock,
        auto_commit=False,
        actor_id="tester",
    )


@pytest.fixture
def strict_ledger(session: Session, deterministic_clock) -> InventoryLedgerService:
    """Facade that rejects sales taking the aggregate below zero."""
    return InventoryLedgerService(
        session,
        deterministic_clock,
        settings=LedgerSettings(aggregate=AggregateSettings(block_negative_sales=True)),
        auto_commit=False,
        actor_id="tester",
    )


@pytest.fixture
def buy(ledger):
    """Record a one-line purchase and return its lot."""

    def _buy(
        product,
        quantity,
        unit_price,
        trade_date: date = date(2024, 6, 1),
        warehouse_id: str | None = "WH1",
    ):
        recorded = ledger.record_purchase(
            trade_date=trade_date,
            warehouse_id=warehouse_id,
            lines=[
                LineDraft(
                    product_id=product.id,
                    quantity=Decimal(str(quantity)),
                    unit_price=Decimal(str(unit_price)),
                )
            ],
        )
        return recorded.lines[0].lot

    return _buy


@pytest.fixture
def sell(ledger):
    """Record a one-line sale, optionally matched to explicit picks."""

    def _sell(
        product,
        quantity,
        unit_price,
        trade_date: date = date(2024, 6, 10),
        picks=(),
        auto_match: bool | None = None,
        warehouse_id: str | None = "WH1",
    ):
        recorded = ledger.record_sale(
            trade_date=trade_date,
            warehouse_id=warehouse_id,
            auto_match=auto_match,
            lines=[
                LineDraft(
                    product_id=product.id,
                    quantity=Decimal(str(quantity)),
                    unit_price=Decimal(str(unit_price)),
                    picks=tuple(picks),
                )
            ],
        )
        return recorded.lines[0].line

    return _sell
