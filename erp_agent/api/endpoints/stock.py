# erp_agent/api/endpoints/stock.py
from fastapi import APIRouter, Depends
from erp_agent.api.deps import get_stock_query, require_store
from erp_agent.schemas.status import StockResponse
from erp_agent.services.stock_query import StockQuery

router = APIRouter(tags=["stock"])

@router.get("/stock/{sku}", response_model=StockResponse, dependencies=[Depends(require_store)])
async def check_stock(
    sku: str,
    stock_query: StockQuery = Depends(get_stock_query)
):
    """Остаток товара по всем магазинам; неизвестный sku - 0"""
    return StockResponse(sku=sku, stock=await stock_query.lookup(sku))
