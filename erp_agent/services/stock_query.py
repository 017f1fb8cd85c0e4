import logging
from typing import Optional
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from erp_agent.core.exceptions import DataSourceError
from erp_agent.database import Store
from erp_agent.models.erp import ErpProduct, ErpProductStock
from erp_agent.services.change_detector import clamped_stock

logger = logging.getLogger(__name__)


class StockQuery:
    """Остаток одного товара по всем магазинам"""

    def __init__(self, session_factory: async_sessionmaker, store: Optional[Store] = None):
        self._session_factory = session_factory
        self._store = store

    async def lookup(self, sku: str) -> int:
        """Неизвестный sku дает 0, а не ошибку"""
        stmt = (
            select(clamped_stock())
            .select_from(ErpProduct)
            .join(ErpProductStock, ErpProduct.code == ErpProductStock.product_code)
            .where(ErpProduct.barcode == sku)
        )
        try:
            async with self._session_factory() as session:
                total = await session.scalar(stmt)
        except SQLAlchemyError as e:
            if self._store is not None:
                raise await self._store.query_failure(e, f"Stock lookup for {sku}") from e
            logger.error(f"Stock lookup for {sku} failed: {e}")
            raise DataSourceError(f"Stock lookup failed: {getattr(e, 'orig', e)}") from e

        return max(int(total or 0), 0)
