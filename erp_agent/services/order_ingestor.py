import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Tuple
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from erp_agent.core.config import Settings
from erp_agent.core.exceptions import DataSourceError, OrderValidationError, ProductNotFoundError
from erp_agent.database import Store
from erp_agent.models.erp import ErpOrder, ErpOrderLine, ErpProduct
from erp_agent.schemas.order import CustomerIn, OrderItemIn, OrderRequest

logger = logging.getLogger(__name__)

@dataclass
class OrderLine:
    """Позиция созданного заказа"""
    order_id: int
    line_number: int
    product_code: int
    description: Optional[str]
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal

@dataclass
class Order:
    """Заказ, записанный в ERP"""
    id: int
    sequence: int
    customer_name: str
    total: Decimal
    lines: List[OrderLine] = field(default_factory=list)

@dataclass
class CatalogEntry:
    """Товар каталога, найденный по sku"""
    code: int
    description: Optional[str]
    price: Optional[Decimal]

class OrderIngestor:
    """
    Создание заказа в ERP одной транзакцией.

    Порядок: проверка -> поиск sku -> выделение (id, sequence) -> заголовок ->
    позиции -> commit. Любая ошибка после открытия транзакции откатывает все.
    Выделение номеров - единственная точка сериализации: блокирующее чтение
    MAX() в той же транзакции плюс asyncio.Lock процесса, который держится до
    commit/rollback.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        store_code: int = 1,
        seller_code: int = 1,
        note: str = "PEDIDO VIA SITE",
        user_name: str = "INTEGRACAO",
        customer_name_max_length: int = 50,
        default_customer_name: str = "CLIENTE WEB",
        clock: Callable[[], datetime] = datetime.now,
        store: Optional[Store] = None
    ):
        self._session_factory = session_factory
        self._store = store
        self.store_code = store_code
        self.seller_code = seller_code
        self.note = note
        self.user_name = user_name
        self.customer_name_max_length = customer_name_max_length
        self.default_customer_name = default_customer_name
        self._clock = clock
        self._allocation_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker,
        settings: Settings,
        store: Optional[Store] = None
    ) -> "OrderIngestor":
        return cls(
            session_factory,
            store_code=settings.ORDER_STORE_CODE,
            seller_code=settings.ORDER_SELLER_CODE,
            note=settings.ORDER_NOTE,
            user_name=settings.ORDER_USER,
            customer_name_max_length=settings.CUSTOMER_NAME_MAX_LENGTH,
            default_customer_name=settings.DEFAULT_CUSTOMER_NAME,
            store=store
        )

    def validate(self, request: OrderRequest) -> None:
        if request.customer is None or not request.items:
            raise OrderValidationError("Invalid order data (customer or items missing)")

    def customer_name(self, customer: CustomerIn) -> str:
        name = (customer.name or "").strip()
        if not name:
            return self.default_customer_name
        return name[:self.customer_name_max_length]

    async def resolve(self, session: AsyncSession, sku: str) -> CatalogEntry:
        """sku -> (внутренний код, наименование, цена каталога)"""
        stmt = (
            select(ErpProduct.code, ErpProduct.name, ErpProduct.price)
            .where(ErpProduct.barcode == sku)
            .limit(1)
        )
        row = (await session.execute(stmt)).first()
        if row is None:
            raise ProductNotFoundError(sku)
        return CatalogEntry(code=row.code, description=row.name, price=row.price)

    async def allocate_ids(self, session: AsyncSession) -> Tuple[int, int]:
        """Следующие (id, sequence) заказа; вызывать внутри транзакции и под _allocation_lock"""
        orders_table = ErpOrder.__table__

        # На PostgreSQL FOR UPDATE несовместим с агрегатами - блокируем таблицу
        if session.bind.dialect.name == "postgresql":
            await session.execute(text(f'LOCK TABLE "{orders_table.name}" IN EXCLUSIVE MODE'))

        stmt = select(
            func.coalesce(func.max(ErpOrder.id), 0) + 1,
            func.coalesce(func.max(ErpOrder.sequence), 0) + 1,
        ).with_hint(orders_table, "WITH (UPDLOCK, HOLDLOCK)", dialect_name="mssql")

        order_id, sequence = (await session.execute(stmt)).one()
        return int(order_id), int(sequence)

    def build_order(
        self,
        order_id: int,
        sequence: int,
        customer_name: str,
        items: List[OrderItemIn],
        catalog: List[CatalogEntry]
    ) -> Order:
        lines = []
        for number, (item, entry) in enumerate(zip(items, catalog), start=1):
            # Цена сайта принимается как есть, расхождение с каталогом только логируем
            if entry.price is not None and entry.price != item.unit_price:
                logger.info(
                    f"Price for {item.sku} differs from catalog: "
                    f"site={item.unit_price}, catalog={entry.price}"
                )
            lines.append(OrderLine(
                order_id=order_id,
                line_number=number,
                product_code=entry.code,
                description=entry.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                line_total=item.quantity * item.unit_price
            ))

        total = sum((line.line_total for line in lines), Decimal("0"))
        return Order(
            id=order_id,
            sequence=sequence,
            customer_name=customer_name,
            total=total,
            lines=lines
        )

    async def _insert(self, session: AsyncSession, order: Order) -> None:
        now = self._clock()

        session.add(ErpOrder(
            id=order.id,
            store_code=self.store_code,
            issued_at=now,
            customer_name=order.customer_name,
            seller_code=self.seller_code,
            gross_total=order.total,
            net_total=order.total,
            note=self.note,
            user_name=self.user_name,
            sequence=order.sequence
        ))
        await session.flush()

        session.add_all([
            ErpOrderLine(
                order_id=line.order_id,
                line_number=line.line_number,
                product_code=line.product_code,
                description=line.description,
                quantity=line.quantity,
                unit_price=line.unit_price,
                line_total=line.line_total,
                created_at=now
            )
            for line in order.lines
        ])
        await session.flush()

    async def ingest(self, request: OrderRequest) -> Order:
        """Создание заказа; ProductNotFoundError / DataSourceError после отката"""
        self.validate(request)
        customer_name = self.customer_name(request.customer)

        async with self._session_factory() as session:
            try:
                catalog = [await self.resolve(session, item.sku) for item in request.items]

                async with self._allocation_lock:
                    order_id, sequence = await self.allocate_ids(session)
                    order = self.build_order(order_id, sequence, customer_name, request.items, catalog)
                    await self._insert(session, order)
                    await session.commit()

            except ProductNotFoundError as e:
                await session.rollback()
                logger.warning(f"Order rejected, rolled back: {e}")
                raise

            except SQLAlchemyError as e:
                await session.rollback()
                if self._store is not None:
                    raise await self._store.query_failure(e, "Order transaction") from e
                logger.error(f"Order transaction failed, rolled back: {e}")
                raise DataSourceError(f"Order could not be stored: {getattr(e, 'orig', e)}") from e

        logger.info(f"Order {order.id} (seq {order.sequence}) created with {len(order.lines)} items, total {order.total}")
        return order
