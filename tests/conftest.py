import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from stockflow.config import settings
from stockflow.core.events import RecordingDispatcher
from stockflow.database import build_engine, build_session_factory, init_db
from stockflow.models import (
    MovementType,
    PriceList,
    PriceListItem,
    Product,
    Supplier,
    Warehouse,
)
from stockflow.services.allocation_service import AllocationService
from stockflow.services.ledger_service import LedgerService
from stockflow.services.unit_of_work import run_atomic


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'stockflow.db'}")
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def events():
    return RecordingDispatcher()


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(settings, "LEDGER_RETRY_BACKOFF_SECONDS", 0.0)


class Seed:
    """Test data builder. Ledger rows and orders go through the services."""

    def __init__(self, db):
        self.db = db

    async def warehouse(self, code="WH-MAIN", priority=100, is_active=True) -> Warehouse:
        warehouse = Warehouse(id=uuid.uuid4(), code=code, name=f"Warehouse {code}", priority=priority, is_active=is_active)
        self.db.add(warehouse)
        await self.db.commit()
        return warehouse

    async def supplier(self, code="SUP-1", lead_time_days=7, is_active=True) -> Supplier:
        supplier = Supplier(
            id=uuid.uuid4(),
            code=code,
            name=f"Supplier {code}",
            lead_time_days=lead_time_days,
            is_active=is_active,
        )
        self.db.add(supplier)
        await self.db.commit()
        return supplier

    async def product(self, sku="SKU-1", supplier=None, cost_price="10.00") -> Product:
        product = Product(
            id=uuid.uuid4(),
            sku=sku,
            name=f"Product {sku}",
            supplier_id=supplier.id if supplier is not None else None,
            cost_price=Decimal(cost_price),
            is_active=True,
        )
        self.db.add(product)
        await self.db.commit()
        return product

    async def record(self, product, warehouse, quantity=0, unit_cost=None, location_code="", **thresholds):
        return await LedgerService(self.db).upsert_ledger_record(
            product.id,
            warehouse.id,
            location_code,
            initial_quantity=quantity,
            unit_cost=unit_cost,
            **thresholds,
        )

    async def order(self, *lines, warehouse=None, order_number=None):
        """lines are (product, quantity) or (product, quantity, unit_price)."""
        normalized = []
        for line in lines:
            product, quantity = line[0], line[1]
            price = Decimal(line[2]) if len(line) > 2 else Decimal("25.00")
            normalized.append((product.id, quantity, price))
        return await AllocationService(self.db).create_order(
            normalized,
            order_number=order_number,
            warehouse_id=warehouse.id if warehouse is not None else None,
        )

    async def price_list(self, supplier, prices, effective_date=None, status="active") -> PriceList:
        price_list = PriceList(
            id=uuid.uuid4(),
            supplier_id=supplier.id,
            name=f"{supplier.code} list",
            status=status,
            effective_date=effective_date or date.today() - timedelta(days=30),
        )
        self.db.add(price_list)
        for sku, unit_price in prices.items():
            self.db.add(PriceListItem(
                id=uuid.uuid4(),
                price_list_id=price_list.id,
                sku=sku,
                unit_price=Decimal(unit_price),
                minimum_quantity=1,
            ))
        await self.db.commit()
        return price_list

    async def sales(self, inventory_id, daily_quantities, end=None):
        """
        Book one reservation and sale per day, oldest first, so the ledger
        carries a realistic demand history. daily_quantities[-1] is sold on
        the day before end; zero entries leave a gap.
        """
        end = end or datetime.now(timezone.utc)
        ledger = LedgerService(self.db)
        days = len(daily_quantities)

        async def operation(pending):
            record = await ledger.lock_record(inventory_id)
            for offset, quantity in enumerate(daily_quantities):
                if quantity <= 0:
                    continue
                moment = end - timedelta(days=days - offset)
                ledger.apply_movement(record, MovementType.RESERVATION, quantity, pending, occurred_at=moment)
                ledger.apply_movement(record, MovementType.SALE, -quantity, pending, occurred_at=moment)

        await run_atomic(self.db, operation, label="seed sales")


@pytest.fixture
def seed(db):
    return Seed(db)
