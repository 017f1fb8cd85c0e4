# erp_agent/database.py
import asyncio
import logging
from typing import Optional
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from erp_agent.core.config import Settings
from erp_agent.core.exceptions import AgentError, DataSourceError, StoreConnectionError

logger = logging.getLogger(__name__)

# Базовый класс для моделей ERP
Base = declarative_base()


class Store:
    """Пул соединений с базой ERP и признак доступности"""

    def __init__(
        self,
        url: str,
        pool_size: int = 10,
        pool_timeout: int = 30,
        retry_delay: float = 5,
        engine: Optional[AsyncEngine] = None
    ):
        self.retry_delay = retry_delay
        self.engine = engine or create_async_engine(
            url,
            pool_size=pool_size,      # Общий пул для цикла синхронизации и запросов
            max_overflow=0,           # Сверх пула - ожидание в очереди, не новые соединения
            pool_timeout=pool_timeout,
            pool_pre_ping=True,       # Проверка соединения
            pool_recycle=300,         # Пересоздание каждые 5 мин
            echo=False
        )
        # Фабрика сессий
        self.session_factory = async_sessionmaker(
            self.engine,
            autoflush=False,
            expire_on_commit=False
        )
        self.connected = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "Store":
        return cls(
            settings.database_url,
            pool_size=settings.DB_POOL_SIZE,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            retry_delay=settings.DB_CONNECT_RETRY_DELAY
        )

    async def ping(self) -> bool:
        """Проверка соединения, обновляет признак connected"""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            if self.connected:
                logger.error(f"Store connection lost: {e}")
            self.connected = False
            return False

        if not self.connected:
            logger.info(f"Connected to store {self.engine.url.database}")
        self.connected = True
        return True

    async def connect(self) -> None:
        """Подключение с повторными попытками через фиксированную паузу"""
        while not await self.ping():
            logger.warning(f"Store unavailable, retrying in {self.retry_delay}s...")
            await asyncio.sleep(self.retry_delay)

    async def is_available(self) -> bool:
        """Доступна ли база; при офлайне пробуем переподключиться"""
        if self.connected:
            return True
        return await self.ping()

    def mark_suspect(self) -> None:
        """После ошибки запроса следующая проверка доступности пойдет через ping"""
        self.connected = False

    async def ensure_available(self) -> None:
        if not await self.is_available():
            raise StoreConnectionError("Store is offline")

    async def query_failure(self, error: SQLAlchemyError, action: str) -> AgentError:
        """
        Ошибка запроса -> исключение для клиента.

        Разорванное соединение или неуспешный ping - база офлайн (503),
        иначе ошибка самого запроса (500).
        """
        self.mark_suspect()
        reason = getattr(error, "orig", None) or error
        if getattr(error, "connection_invalidated", False) or not await self.ping():
            logger.error(f"{action} failed, store is unreachable: {reason}")
            return StoreConnectionError(f"Store is offline: {reason}")

        logger.error(f"{action} failed: {reason}")
        return DataSourceError(f"{action} failed: {reason}")

    async def dispose(self) -> None:
        await self.engine.dispose()
        self.connected = False
