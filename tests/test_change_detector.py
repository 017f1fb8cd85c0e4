import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from erp_agent.core.exceptions import DataSourceError
from erp_agent.database import Store
from erp_agent.services.change_detector import ChangeDetector, Product, to_store_time
from erp_agent.services.stock_query import StockQuery


def minute_ago() -> datetime:
    return datetime.now(timezone.utc) - timedelta(minutes=1)


@pytest.mark.asyncio
async def test_no_changes_returns_empty_list(store, seed_product):
    """Тест: изменений после курсора нет"""
    await seed_product(1, "7890001", changed_at=datetime.now() - timedelta(hours=2))

    detector = ChangeDetector(store.session_factory)

    assert await detector.detect(minute_ago()) == []


@pytest.mark.asyncio
async def test_negative_location_stock_is_clamped(store, seed_product):
    """Тест: отрицательный остаток магазина считается нулем, а не вычитается"""
    await seed_product(1, "7890001", name="Cafe", stocks=[(1, 5), (2, -3)])
    await seed_product(2, "7890002", name="Acucar", stocks=[(1, -2), (2, 4), (3, 1)])

    products = await ChangeDetector(store.session_factory).detect(minute_ago())

    assert [p.sku for p in products] == ["7890001", "7890002"]
    assert products[0].total_stock == 5
    assert products[1].total_stock == 5
    assert all(p.total_stock >= 0 for p in products)


@pytest.mark.asyncio
async def test_all_negative_stock_gives_zero(store, seed_product):
    await seed_product(1, "7890001", stocks=[(1, -4), (2, -1)])

    products = await ChangeDetector(store.session_factory).detect(minute_ago())

    assert products[0].total_stock == 0


@pytest.mark.asyncio
async def test_products_without_sku_are_excluded(store, seed_product):
    await seed_product(1, None)
    await seed_product(2, "")
    await seed_product(3, "7890003")

    products = await ChangeDetector(store.session_factory).detect(minute_ago())

    assert [p.sku for p in products] == ["7890003"]


@pytest.mark.asyncio
async def test_only_rows_changed_strictly_after_cursor(store, seed_product):
    since = minute_ago()
    await seed_product(1, "AT-CURSOR", changed_at=to_store_time(since))
    await seed_product(2, "AFTER", changed_at=to_store_time(since) + timedelta(seconds=1))
    await seed_product(3, "BEFORE", changed_at=to_store_time(since) - timedelta(seconds=1))

    products = await ChangeDetector(store.session_factory).detect(since)

    assert [p.sku for p in products] == ["AFTER"]


@pytest.mark.asyncio
async def test_product_fields_and_wire_format(store, seed_product):
    await seed_product(7, "7890007", name="Feijao 1kg", price="8.49", stocks=[(1, 3), (2, 2)])

    products = await ChangeDetector(store.session_factory).detect(minute_ago())

    assert products == [Product(sku="7890007", name="Feijao 1kg", total_stock=5, price=Decimal("8.49"))]
    assert products[0].to_dict() == {"sku": "7890007", "name": "Feijao 1kg", "total_stock": 5, "price": 8.49}


@pytest.mark.asyncio
async def test_query_failure_raises_data_source_error(tmp_path):
    """Тест ошибки запроса: таблиц нет"""
    empty_store = Store(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}", pool_size=1)
    try:
        with pytest.raises(DataSourceError):
            await ChangeDetector(empty_store.session_factory).detect(minute_ago())
    finally:
        await empty_store.dispose()


@pytest.mark.asyncio
async def test_stock_lookup_clamps_and_defaults_to_zero(store, seed_product):
    """Тест StockQuery: та же сумма без отрицательных, неизвестный sku - 0"""
    await seed_product(1, "7890001", stocks=[(1, 6), (2, -10), (3, 4)])
    stock_query = StockQuery(store.session_factory)

    assert await stock_query.lookup("7890001") == 10
    assert await stock_query.lookup("UNKNOWN") == 0
