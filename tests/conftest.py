import pytest
import pytest_asyncio
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Tuple
from erp_agent.database import Base, Store
from erp_agent.models.erp import ErpOrder, ErpOrderLine, ErpProduct, ErpProductStock


@pytest_asyncio.fixture
async def store(tmp_path):
    """Временная база ERP (SQLite) с таблицами из моделей"""
    store = Store(f"sqlite+aiosqlite:///{tmp_path / 'erp.db'}", pool_size=5, pool_timeout=5, retry_delay=0)
    async with store.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await store.ping()
    yield store
    await store.dispose()


@pytest.fixture
def seed_product(store):
    """Добавить товар каталога с остатками по магазинам"""
    async def _seed(
        code: int,
        sku: Optional[str],
        name: str = "Produto",
        price: str = "10.00",
        stocks: Iterable[Tuple[int, int]] = ((1, 10),),
        changed_at: Optional[datetime] = None
    ) -> None:
        async with store.session_factory() as session:
            session.add(ErpProduct(
                code=code,
                barcode=sku,
                name=name,
                price=Decimal(price),
                changed_at=changed_at or datetime.now()
            ))
            for store_code, quantity in stocks:
                session.add(ErpProductStock(
                    product_code=code,
                    store_code=store_code,
                    current_stock=quantity,
                    sale_price=Decimal(price)
                ))
            await session.commit()
    return _seed


@pytest.fixture
def seed_order(store):
    """Существующий заказ в ERP (для проверки нумерации)"""
    async def _seed(order_id: int, sequence: int) -> None:
        async with store.session_factory() as session:
            session.add(ErpOrder(
                id=order_id,
                store_code=1,
                issued_at=datetime.now(),
                customer_name="EXISTING",
                seller_code=1,
                gross_total=Decimal("1.00"),
                net_total=Decimal("1.00"),
                note="",
                user_name="ERP",
                sequence=sequence
            ))
            await session.commit()
    return _seed


@pytest.fixture
def seed_line(store):
    """Позиция заказа без заголовка"""
    async def _seed(order_id: int, line_number: int) -> None:
        async with store.session_factory() as session:
            session.add(ErpOrderLine(
                order_id=order_id,
                line_number=line_number,
                product_code=1,
                description="ORPHAN",
                quantity=Decimal("1"),
                unit_price=Decimal("1.00"),
                line_total=Decimal("1.00"),
                created_at=datetime.now()
            ))
            await session.commit()
    return _seed
