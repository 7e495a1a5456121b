"""Shared test fixtures and configuration for SleekInvoices backend tests."""
import pytest
import pytest_asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, List, Optional, Tuple

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from sleekinvoices.database import Base
from sleekinvoices.models import Client, Invoice, InvoiceLineItem, Payment, User
import sleekinvoices.quickbooks.models  # noqa: F401  (registers the sync tables)

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


# =============================================================================
# Database
# =============================================================================

@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite database with every table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest correctly on SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine) -> AsyncGenerator[AsyncSession, None]:
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session


# =============================================================================
# Collaborator records
# =============================================================================

@pytest_asyncio.fixture
async def user(db) -> User:
    user = User(id="user_test", email="owner@example.com", name="Owner", company_name="Owner Studio")
    db.add(user)
    await db.commit()
    return user


class Records:
    """Creates the invoicing rows the sync layer reads, owned by one user."""

    def __init__(self, db: AsyncSession, user_id: str):
        self.db = db
        self.user_id = user_id

    async def client(self, **kwargs) -> Client:
        values = {"name": "Alice Smith", "email": "a@x.com"}
        values.update(kwargs)
        client = Client(user_id=self.user_id, **values)
        self.db.add(client)
        await self.db.commit()
        return client

    async def invoice(
        self,
        client_id: Optional[str],
        lines: Optional[List[Tuple[str, str, str]]] = None,
        **kwargs,
    ) -> Invoice:
        """Create an invoice; ``lines`` are (description, quantity, rate) tuples."""
        lines = lines if lines is not None else [("Design work", "2", "50.00")]
        total = sum((Decimal(q) * Decimal(r) for _, q, r in lines), Decimal("0"))

        values = {
            "invoice_number": "INV-0001",
            "status": "sent",
            "currency": "USD",
            "subtotal": total,
            "total": total,
            "amount_paid": Decimal("0"),
            "issue_date": datetime(2026, 3, 1, tzinfo=timezone.utc),
            "due_date": datetime(2026, 3, 31, tzinfo=timezone.utc),
        }
        values.update(kwargs)
        invoice = Invoice(user_id=self.user_id, client_id=client_id, **values)
        self.db.add(invoice)
        await self.db.flush()

        for index, (description, quantity, rate) in enumerate(lines):
            self.db.add(InvoiceLineItem(
                invoice_id=invoice.id,
                description=description,
                quantity=Decimal(quantity),
                rate=Decimal(rate),
                amount=Decimal(quantity) * Decimal(rate),
                sort_order=index,
            ))
        await self.db.commit()
        return invoice

    async def payment(self, invoice_id: str, **kwargs) -> Payment:
        values = {
            "amount": Decimal("100.00"),
            "currency": "USD",
            "payment_method": "manual",
            "payment_date": datetime(2026, 3, 10, tzinfo=timezone.utc),
            "status": "completed",
        }
        values.update(kwargs)
        payment = Payment(user_id=self.user_id, invoice_id=invoice_id, **values)
        self.db.add(payment)
        await self.db.commit()
        return payment


@pytest.fixture
def records(db, user) -> Records:
    return Records(db, user.id)
