# erp_agent/api/endpoints/orders.py
from fastapi import APIRouter, Depends, status
from erp_agent.api.deps import get_order_ingestor, require_store
from erp_agent.schemas.order import OrderCreatedResponse, OrderRequest
from erp_agent.services.order_ingestor import OrderIngestor

router = APIRouter(tags=["orders"])

@router.post(
    "/orders",
    response_model=OrderCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_store)]
)
async def create_order(
    order_in: OrderRequest,
    ingestor: OrderIngestor = Depends(get_order_ingestor)
):
    """
    Создание заказа с сайта в ERP.
    Ошибки (400/422/500/503) формируют обработчики исключений в main.
    """
    order = await ingestor.ingest(order_in)
    return OrderCreatedResponse(success=True, order_id=order.id)
