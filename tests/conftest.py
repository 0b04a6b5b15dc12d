"""
Test Configuration and Fixtures
Shared testing infrastructure for the inventory ledger
"""

import uuid
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db, custom_json_dumps
from app.main import app
from app.models import audit_log, inventory, stock_count, variance  # noqa: F401  register tables
from app.models.inventory import InventoryItem, MovementType
from app.services.inventory_service import InventoryService
from app.services.ledger_service import LedgerService
from app.services.reconciliation_service import ReconciliationService
from app.services.stock_count_service import StockCountService

# In-memory SQLite shared across connections by StaticPool
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def engine():
    """Fresh schema for each test."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        json_serializer=custom_json_dumps,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """File-backed database so separate sessions run on separate connections."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"timeout": 30},
        json_serializer=custom_json_dumps,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(file_engine):
    return async_sessionmaker(file_engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def seed_branch(session_factory):
    """Factory: items with opening stock in the file-backed database. Returns ids by name."""
    async def _seed(branch_id: uuid.UUID, stock: dict) -> dict:
        async with session_factory() as session:
            inventory_service = InventoryService(session)
            unit = await inventory_service.create_unit("Kilogram", "kg")
            item_ids = {}
            for name, quantity in stock.items():
                item = await inventory_service.create_item(branch_id, name, unit.id)
                item_ids[name] = item.id
                if quantity:
                    await LedgerService(session).record_movement(
                        item.id, branch_id, MovementType.INITIAL_STOCK, quantity
                    )
        return item_ids

    return _seed


@pytest_asyncio.fixture
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test"""
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the database dependency pointed at the test session"""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def auth_headers(user_id: uuid.UUID) -> dict:
    return {"X-User-Id": str(user_id)}


@pytest.fixture
def branch_a() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def branch_b() -> uuid.UUID:
    return uuid.uuid4()


@pytest_asyncio.fixture
async def kg(db_session: AsyncSession):
    return await InventoryService(db_session).create_unit("Kilogram", "kg")


@pytest_asyncio.fixture
async def grams(db_session: AsyncSession):
    return await InventoryService(db_session).create_unit("Gram", "g")


@pytest_asyncio.fixture
async def make_item(db_session: AsyncSession, kg):
    """Factory: create an item in a branch, optionally with opening stock."""
    async def _make_item(
        branch_id: uuid.UUID,
        name: str,
        opening_stock: Decimal = Decimal("0"),
        min_level: Decimal = Decimal("0"),
        reorder_point: Decimal = Decimal("0"),
        base_unit_id: uuid.UUID = None,
    ) -> InventoryItem:
        item = await InventoryService(db_session).create_item(
            branch_id=branch_id,
            name=name,
            base_unit_id=base_unit_id or kg.id,
            min_level=min_level,
            reorder_point=reorder_point,
        )
        if opening_stock:
            await LedgerService(db_session).record_movement(
                item.id, branch_id, MovementType.INITIAL_STOCK, opening_stock
            )
        return item

    return _make_item


@pytest_asyncio.fixture
async def run_count(db_session: AsyncSession, user_id: uuid.UUID):
    """Factory: open, fill, submit and approve a count. ``actuals`` maps item id to counted qty."""
    async def _run_count(branch_id: uuid.UUID, actuals: dict) -> dict:
        service = StockCountService(db_session)
        stock_count = await service.create_stock_count(branch_id, user_id)
        for line in await service.get_count_lines(stock_count.id):
            counted = actuals.get(line.item_id, line.expected_quantity)
            await service.update_count_line(line.id, Decimal(str(counted)))
        await service.submit(stock_count.id, user_id)
        return await ReconciliationService(db_session).approve(stock_count.id, user_id)

    return _run_count
