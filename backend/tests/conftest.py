"""Pytest configuration and fixtures."""

from decimal import Decimal
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from tabsettle.core.config import Settings
from tabsettle.core.rate_limit import limiter
from tabsettle.core.security import create_access_token
from tabsettle.db.base import Base
from tabsettle.db.session import Store, enable_sqlite_foreign_keys
from tabsettle.main import create_app
# Import all models to ensure they're registered with Base.metadata
from tabsettle.models import *  # noqa: F401,F403
from tabsettle.models.catalog import BuffetPackage, Customer, DiningTable, Employee, Service
from tabsettle.services.invoice_service import InvoiceService
from tabsettle.services.order_service import OrderManager
from tabsettle.services.payroll_service import PayrollService
from tabsettle.services.settlement_service import SettlementEngine

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        secret_key="test-secret-key-that-is-long-enough-for-hs256",
        debug=True,
        tax_rate_percent=Decimal("0"),
        rate_limit_enabled=False,
    )


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def store(db_engine) -> Store:
    return Store(db_engine)


@pytest.fixture(scope="function")
def db_session(store: Store) -> Generator[Session, None, None]:
    """Session for seeding and inspecting the test database."""
    session = store.new_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def orders(store: Store, settings: Settings) -> OrderManager:
    return OrderManager(store, settings)


@pytest.fixture
def settlement(store: Store, settings: Settings) -> SettlementEngine:
    return SettlementEngine(store, settings)


@pytest.fixture
def invoices(store: Store, settings: Settings) -> InvoiceService:
    return InvoiceService(store, settings)


@pytest.fixture
def payroll(store: Store, settings: Settings) -> PayrollService:
    return PayrollService(store, settings)


@pytest.fixture(scope="function")
def client(store: Store, settings: Settings) -> Generator[TestClient, None, None]:
    """Test client on a fresh app bound to the test store."""
    app = create_app(settings=settings, store=store)
    # Disable rate limiting during tests to avoid flaky failures
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    limiter.enabled = True


@pytest.fixture
def test_table(db_session: Session) -> DiningTable:
    table = DiningTable(table_name="T1", area="Garden", capacity=4, is_active=True)
    db_session.add(table)
    db_session.commit()
    db_session.refresh(table)
    return table


@pytest.fixture
def other_table(db_session: Session) -> DiningTable:
    table = DiningTable(table_name="T2", area="Hall", capacity=6, is_active=True)
    db_session.add(table)
    db_session.commit()
    db_session.refresh(table)
    return table


@pytest.fixture
def test_employee(db_session: Session) -> Employee:
    employee = Employee(
        employee_code="NV001",
        fullname="Nguyen Van An",
        position="waiter",
        base_salary=Decimal("5000000"),
        commission_rate=Decimal("5"),
        is_active=True,
    )
    db_session.add(employee)
    db_session.commit()
    db_session.refresh(employee)
    return employee


@pytest.fixture
def other_employee(db_session: Session) -> Employee:
    employee = Employee(
        employee_code="NV002",
        fullname="Tran Thi Binh",
        position="therapist",
        base_salary=Decimal("6000000"),
        commission_rate=Decimal("10"),
        is_active=True,
    )
    db_session.add(employee)
    db_session.commit()
    db_session.refresh(employee)
    return employee


@pytest.fixture
def test_customer(db_session: Session) -> Customer:
    customer = Customer(fullname="Le Minh", phone="0901234567", loyalty_points=0)
    db_session.add(customer)
    db_session.commit()
    db_session.refresh(customer)
    return customer


@pytest.fixture
def buffet_package(db_session: Session) -> BuffetPackage:
    package = BuffetPackage(name="Lau Nam", price=Decimal("199000"), duration_minutes=90, is_active=True)
    db_session.add(package)
    db_session.commit()
    db_session.refresh(package)
    return package


@pytest.fixture
def premium_package(db_session: Session) -> BuffetPackage:
    package = BuffetPackage(name="Hai San", price=Decimal("299000"), duration_minutes=120, is_active=True)
    db_session.add(package)
    db_session.commit()
    db_session.refresh(package)
    return package


@pytest.fixture
def coke(db_session: Session) -> Service:
    """Drink without its own commission rate."""
    service = Service(name="Coke", category="drink", price=Decimal("15000"), commission_rate=None, is_active=True)
    db_session.add(service)
    db_session.commit()
    db_session.refresh(service)
    return service


@pytest.fixture
def beer(db_session: Session) -> Service:
    service = Service(name="Beer", category="drink", price=Decimal("25000"), commission_rate=None, is_active=True)
    db_session.add(service)
    db_session.commit()
    db_session.refresh(service)
    return service


@pytest.fixture
def massage(db_session: Session) -> Service:
    """Spa service with a 5% commission."""
    service = Service(name="Massage 60'", category="spa", price=Decimal("100000"), commission_rate=Decimal("5"), is_active=True)
    db_session.add(service)
    db_session.commit()
    db_session.refresh(service)
    return service


def make_headers(settings: Settings, employee_id: int, role: str = "staff") -> dict:
    token = create_access_token({"sub": str(employee_id), "role": role}, settings=settings)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(settings: Settings, test_employee: Employee) -> dict:
    """Headers of a staff member."""
    return make_headers(settings, test_employee.id, "staff")


@pytest.fixture
def manager_headers(settings: Settings) -> dict:
    return make_headers(settings, 900, "manager")
