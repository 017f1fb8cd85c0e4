import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from sqlalchemy import and_, case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from erp_agent.core.exceptions import DataSourceError
from erp_agent.models.erp import ErpProduct, ErpProductStock

logger = logging.getLogger(__name__)


@dataclass
class Product:
    """Измененный товар для отправки на сайт"""
    sku: str
    name: Optional[str]
    total_stock: int
    price: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sku": self.sku,
            "name": self.name,
            "total_stock": self.total_stock,
            "price": float(self.price) if self.price is not None else None,
        }


def to_store_time(value: datetime) -> datetime:
    """ERP хранит локальное время сервера без зоны (GETDATE())"""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def clamped_stock():
    """Сумма остатков по магазинам, отрицательные остатки считаются нулем"""
    return func.coalesce(
        func.sum(
            case(
                (ErpProductStock.current_stock < 0, 0),
                else_=ErpProductStock.current_stock
            )
        ),
        0
    )


class ChangeDetector:
    """Поиск товаров, измененных после курсора"""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    def _query(self, since: datetime):
        return (
            select(
                ErpProduct.barcode.label("sku"),
                func.max(ErpProduct.name).label("name"),
                clamped_stock().label("total_stock"),
                func.max(ErpProductStock.sale_price).label("price"),
            )
            .join(ErpProductStock, ErpProduct.code == ErpProductStock.product_code)
            .where(
                and_(
                    ErpProduct.changed_at > to_store_time(since),
                    ErpProduct.barcode.isnot(None),
                    ErpProduct.barcode != "",
                )
            )
            .group_by(ErpProduct.barcode)
            .order_by(ErpProduct.barcode)
        )

    async def detect(self, since: datetime) -> List[Product]:
        """Товары с DATA_ALTERACAO строго больше since, агрегированные по sku"""
        try:
            async with self._session_factory() as session:
                result = await session.execute(self._query(since))
                rows = result.all()
        except SQLAlchemyError as e:
            logger.error(f"Change detection query failed: {e}")
            raise DataSourceError(f"Change detection failed: {getattr(e, 'orig', e)}") from e

        products = [
            Product(
                sku=row.sku,
                name=row.name,
                total_stock=max(int(row.total_stock or 0), 0),
                price=row.price,
            )
            for row in rows
        ]

        if products:
            logger.debug(f"Detected {len(products)} changed products since {since.isoformat()}")
        return products
