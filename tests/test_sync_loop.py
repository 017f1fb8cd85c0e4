import asyncio
import httpx
import threading
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock
from erp_agent.core.exceptions import DataSourceError, PersistenceError
from erp_agent.database import Store
from erp_agent.services.change_detector import ChangeDetector, Product
from erp_agent.services.cursor_store import CursorStore
from erp_agent.services.sync_publisher import SyncPublisher
from erp_agent.tasks.sync_loop import ChangeSyncLoop, CycleOutcome, SyncState
from mock_site import mock_server

PREVIOUS = datetime(2024, 1, 20, 9, 59, 0, tzinfo=timezone.utc)
CYCLE_START = datetime(2024, 1, 20, 10, 0, 0, tzinfo=timezone.utc)

BATCH = [Product(sku="7890001", name="Cafe", total_stock=5)]


@pytest.fixture
def cursor_store(tmp_path):
    cursor_store = CursorStore(tmp_path / "cursor.json", clock=lambda: CYCLE_START)
    cursor_store.write(PREVIOUS)
    return cursor_store


@pytest.fixture
def online_store():
    store = Mock(spec=Store)
    store.is_available = AsyncMock(return_value=True)
    return store


def make_loop(store, cursor_store, detector, publisher, **kwargs):
    return ChangeSyncLoop(
        store=store,
        cursor_store=cursor_store,
        detector=detector,
        publisher=publisher,
        clock=lambda: CYCLE_START,
        **kwargs
    )


@pytest.mark.asyncio
async def test_empty_cycle_advances_cursor_without_publishing(online_store, cursor_store):
    """Сценарий: изменений нет -> курсор сдвинут, на сайт ничего не уходит"""
    detector = AsyncMock(spec=ChangeDetector)
    detector.detect.return_value = []
    publisher = AsyncMock(spec=SyncPublisher)

    loop = make_loop(online_store, cursor_store, detector, publisher)
    outcome = await loop.tick()

    assert outcome == CycleOutcome.EMPTY
    detector.detect.assert_awaited_once_with(PREVIOUS)
    publisher.publish.assert_not_called()
    assert cursor_store.read() == CYCLE_START


@pytest.mark.asyncio
async def test_successful_publish_advances_cursor_to_cycle_start(online_store, cursor_store):
    detector = AsyncMock(spec=ChangeDetector)
    detector.detect.return_value = BATCH
    publisher = AsyncMock(spec=SyncPublisher)
    publisher.publish.return_value = True

    loop = make_loop(online_store, cursor_store, detector, publisher)
    outcome = await loop.tick()

    assert outcome == CycleOutcome.PUBLISHED
    publisher.publish.assert_awaited_once_with(BATCH)
    assert cursor_store.read() == CYCLE_START
    assert loop.stats.products_sent == 1
    assert loop.state == SyncState.IDLE


@pytest.mark.asyncio
async def test_failed_publish_keeps_cursor_and_resends_same_window(online_store, cursor_store):
    """Сценарий: таймаут отправки -> следующий цикл с тем же курсором"""
    detector = AsyncMock(spec=ChangeDetector)
    detector.detect.return_value = BATCH
    publisher = AsyncMock(spec=SyncPublisher)
    publisher.publish.return_value = False

    loop = make_loop(online_store, cursor_store, detector, publisher)

    assert await loop.tick() == CycleOutcome.PUBLISH_FAILED
    assert cursor_store.read() == PREVIOUS

    assert await loop.tick() == CycleOutcome.PUBLISH_FAILED
    assert [c.args[0] for c in detector.detect.await_args_list] == [PREVIOUS, PREVIOUS]
    assert publisher.publish.await_count == 2
    assert loop.stats.failed_cycles == 2


@pytest.mark.asyncio
async def test_detection_error_is_a_no_op(online_store, cursor_store):
    detector = AsyncMock(spec=ChangeDetector)
    detector.detect.side_effect = DataSourceError("query timeout")
    publisher = AsyncMock(spec=SyncPublisher)

    loop = make_loop(online_store, cursor_store, detector, publisher)
    outcome = await loop.tick()

    assert outcome == CycleOutcome.DETECT_FAILED
    assert cursor_store.read() == PREVIOUS
    publisher.publish.assert_not_called()
    online_store.mark_suspect.assert_called_once()
    assert loop.stats.last_error == "query timeout"


@pytest.mark.asyncio
async def test_unexpected_detection_error_does_not_escape(online_store, cursor_store):
    detector = AsyncMock(spec=ChangeDetector)
    detector.detect.side_effect = RuntimeError("boom")
    publisher = AsyncMock(spec=SyncPublisher)

    loop = make_loop(online_store, cursor_store, detector, publisher)

    assert await loop.tick() == CycleOutcome.DETECT_FAILED
    assert cursor_store.read() == PREVIOUS


@pytest.mark.asyncio
async def test_offline_store_skips_cycle(cursor_store):
    store = Mock(spec=Store)
    store.is_available = AsyncMock(return_value=False)
    detector = AsyncMock(spec=ChangeDetector)
    publisher = AsyncMock(spec=SyncPublisher)

    loop = make_loop(store, cursor_store, detector, publisher)

    assert await loop.tick() == CycleOutcome.OFFLINE
    detector.detect.assert_not_called()
    assert cursor_store.read() == PREVIOUS


@pytest.mark.asyncio
async def test_cursor_write_failure_is_not_fatal(online_store):
    cursor_store = Mock(spec=CursorStore)
    cursor_store.read.return_value = PREVIOUS
    cursor_store.write.side_effect = PersistenceError("disk full")
    detector = AsyncMock(spec=ChangeDetector)
    detector.detect.return_value = []
    publisher = AsyncMock(spec=SyncPublisher)

    loop = make_loop(online_store, cursor_store, detector, publisher)

    assert await loop.tick() == CycleOutcome.EMPTY
    cursor_store.write.assert_called_once_with(CYCLE_START)
    assert loop.stats.last_error == "disk full"


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped(online_store, cursor_store):
    """Тест single-flight: тик во время незавершенного цикла пропускается"""
    release = asyncio.Event()

    async def slow_detect(since):
        await release.wait()
        return []

    detector = AsyncMock(spec=ChangeDetector)
    detector.detect.side_effect = slow_detect
    publisher = AsyncMock(spec=SyncPublisher)

    loop = make_loop(online_store, cursor_store, detector, publisher)
    first = asyncio.create_task(loop.tick())
    while loop.state != SyncState.DETECTING:
        await asyncio.sleep(0)

    assert loop.in_flight
    assert await loop.tick() == CycleOutcome.SKIPPED

    release.set()
    assert await first == CycleOutcome.EMPTY
    assert detector.detect.await_count == 1
    assert loop.stats.skipped_cycles == 1


@pytest.mark.asyncio
async def test_start_and_stop_background_loop(online_store, cursor_store):
    detector = AsyncMock(spec=ChangeDetector)
    detector.detect.return_value = []
    publisher = AsyncMock(spec=SyncPublisher)

    loop = make_loop(online_store, cursor_store, detector, publisher, interval=0.01)
    loop.start()
    assert loop.running

    for _ in range(100):
        if detector.detect.await_count >= 2:
            break
        await asyncio.sleep(0.01)
    await loop.stop()

    assert not loop.running
    assert detector.detect.await_count >= 2
    assert (await loop.status())["cursor"] == CYCLE_START


@pytest.mark.asyncio
async def test_end_to_end_sync_with_database_and_site(store, seed_product, tmp_path):
    """Интеграционный тест: база ERP -> мок сайта, курсор сдвигается"""
    mock_server.reset()
    await seed_product(1, "7890001", stocks=[(1, 5), (2, -3)], changed_at=datetime.now() - timedelta(seconds=5))

    cursor_store = CursorStore(tmp_path / "cursor.json")
    transport = httpx.ASGITransport(app=mock_server.app)
    async with SyncPublisher("http://site.test/api/stock-updates", token="test-sync-token", transport=transport) as publisher:
        loop = ChangeSyncLoop(store, cursor_store, ChangeDetector(store.session_factory), publisher)

        assert await loop.tick() == CycleOutcome.PUBLISHED
        first_cursor = cursor_store.read()
        assert await loop.tick() == CycleOutcome.EMPTY

    assert mock_server.stock_by_sku["7890001"]["total_stock"] == 5
    assert len(mock_server.received_batches) == 1
    assert cursor_store.read() >= first_cursor
    mock_server.reset()


@pytest.mark.asyncio
async def test_cursor_file_io_runs_off_event_loop(online_store):
    """Тест: чтение и запись курсора не блокируют цикл событий"""
    loop_thread = threading.get_ident()
    io_threads = []

    def record(result=None):
        io_threads.append(threading.get_ident())
        return result

    cursor_store = Mock(spec=CursorStore)
    cursor_store.read.side_effect = lambda: record(PREVIOUS)
    cursor_store.write.side_effect = lambda timestamp: record()
    cursor_store.peek.side_effect = lambda: record(CYCLE_START)
    detector = AsyncMock(spec=ChangeDetector)
    detector.detect.return_value = []

    loop = make_loop(online_store, cursor_store, detector, AsyncMock(spec=SyncPublisher))
    assert await loop.tick() == CycleOutcome.EMPTY
    status = await loop.status()

    assert status["cursor"] == CYCLE_START
    assert len(io_threads) == 3
    assert loop_thread not in io_threads
