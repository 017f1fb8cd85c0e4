import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Set
from erp_agent.core.exceptions import DataSourceError, PersistenceError
from erp_agent.database import Store
from erp_agent.services.change_detector import ChangeDetector
from erp_agent.services.cursor_store import CursorStore, utcnow
from erp_agent.services.sync_publisher import SyncPublisher

logger = logging.getLogger(__name__)

class SyncState(str, enum.Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    PUBLISHING = "publishing"
    ADVANCING = "advancing"

class CycleOutcome(str, enum.Enum):
    EMPTY = "empty"                    # изменений нет, курсор сдвинут
    PUBLISHED = "published"            # пакет принят сайтом, курсор сдвинут
    PUBLISH_FAILED = "publish_failed"  # курсор не тронут, пакет уйдет в следующем цикле
    DETECT_FAILED = "detect_failed"
    OFFLINE = "offline"
    SKIPPED = "skipped"                # предыдущий цикл еще выполняется
    ERROR = "error"

@dataclass
class SyncStats:
    total_cycles: int = 0
    successful_cycles: int = 0
    failed_cycles: int = 0
    skipped_cycles: int = 0
    products_sent: int = 0
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None

class ChangeSyncLoop:
    """
    Цикл синхронизации остатков с сайтом.

    Каждые interval секунд: запомнить cycle_start, прочитать курсор, найти
    изменения, отправить пакет. Курсор сдвигается на cycle_start только если
    изменений нет или сайт принял пакет; при ошибке отправки он остается
    прежним и тот же набор изменений уйдет повторно (at-least-once).
    Циклы не пересекаются: тик во время незавершенного цикла пропускается.
    """

    def __init__(
        self,
        store: Store,
        cursor_store: CursorStore,
        detector: ChangeDetector,
        publisher: SyncPublisher,
        interval: float = 5.0,
        clock: Callable[[], datetime] = utcnow
    ):
        self._store = store
        self._cursor_store = cursor_store
        self._detector = detector
        self._publisher = publisher
        self.interval = interval
        self._clock = clock

        self.state = SyncState.IDLE
        self.stats = SyncStats()
        self._cycle_lock = asyncio.Lock()
        self._runner: Optional[asyncio.Task] = None
        self._cycles: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    @property
    def in_flight(self) -> bool:
        return self._cycle_lock.locked()

    async def tick(self) -> CycleOutcome:
        """Один цикл, если предыдущий уже завершен"""
        if self._cycle_lock.locked():
            self.stats.skipped_cycles += 1
            logger.debug("Sync cycle still in flight, tick skipped")
            return CycleOutcome.SKIPPED

        async with self._cycle_lock:
            try:
                return await self.run_cycle()
            except Exception as e:
                logger.exception(f"Unexpected error in sync cycle: {e}")
                self._record_failure(str(e))
                return CycleOutcome.ERROR
            finally:
                self.state = SyncState.IDLE

    async def run_cycle(self) -> CycleOutcome:
        if not await self._store.is_available():
            self.stats.skipped_cycles += 1
            return CycleOutcome.OFFLINE

        self.stats.total_cycles += 1

        # Время фиксируется до запроса: изменения во время запроса попадут в следующий цикл
        cycle_start = self._clock()
        cursor = await asyncio.to_thread(self._cursor_store.read)

        self.state = SyncState.DETECTING
        try:
            batch = await self._detector.detect(cursor)
        except DataSourceError as e:
            self._store.mark_suspect()
            logger.warning(f"Sync cycle skipped, cursor kept at {cursor.isoformat()}: {e}")
            self._record_failure(str(e))
            return CycleOutcome.DETECT_FAILED
        except Exception as e:
            logger.exception(f"Unexpected error while detecting changes: {e}")
            self._record_failure(str(e))
            return CycleOutcome.DETECT_FAILED

        if not batch:
            await self._advance(cursor, cycle_start)
            return CycleOutcome.EMPTY

        logger.info(f"Detected changes in {len(batch)} products")
        self.state = SyncState.PUBLISHING
        if not await self._publisher.publish(batch):
            self._record_failure(f"Publishing {len(batch)} products failed")
            return CycleOutcome.PUBLISH_FAILED

        self.stats.products_sent += len(batch)
        await self._advance(cursor, cycle_start)
        return CycleOutcome.PUBLISHED

    async def _advance(self, cursor: datetime, cycle_start: datetime) -> None:
        self.state = SyncState.ADVANCING
        self.stats.successful_cycles += 1
        self.stats.last_success_at = cycle_start

        try:
            await asyncio.to_thread(self._cursor_store.write, max(cursor, cycle_start))
        except PersistenceError as e:
            # Следующий цикл пересчитает изменения от старого курсора
            logger.warning(f"Cursor not advanced: {e}")
            self.stats.last_error = str(e)

    def _record_failure(self, error: str) -> None:
        self.stats.failed_cycles += 1
        self.stats.last_error = error

    async def _run(self) -> None:
        logger.info(f"Change sync loop started (interval {self.interval}s)")
        while True:
            cycle = asyncio.create_task(self.tick())
            self._cycles.add(cycle)
            cycle.add_done_callback(self._cycles.discard)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._runner = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Остановка таймера; текущий цикл дорабатывает до конца"""
        if self._runner is not None:
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
            self._runner = None

        if self._cycles:
            await asyncio.gather(*self._cycles, return_exceptions=True)
        logger.info("Change sync loop stopped")

    async def status(self) -> Dict[str, Any]:
        cursor = await asyncio.to_thread(self._cursor_store.peek)
        return {
            "enabled": self.running,
            "state": self.state.value,
            "total_cycles": self.stats.total_cycles,
            "successful_cycles": self.stats.successful_cycles,
            "failed_cycles": self.stats.failed_cycles,
            "skipped_cycles": self.stats.skipped_cycles,
            "products_sent": self.stats.products_sent,
            "last_success_at": self.stats.last_success_at,
            "last_error": self.stats.last_error,
            "cursor": cursor,
        }
