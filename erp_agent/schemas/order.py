# erp_agent/schemas/order.py
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field

class CustomerIn(BaseModel):
    name: Optional[str] = None

# Позиция заказа с сайта
class OrderItemIn(BaseModel):
    sku: str = Field(..., min_length=1)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0, alias="unitPrice")

    class Config:
        populate_by_name = True

# Заказ с сайта; наличие клиента и позиций проверяет OrderIngestor
class OrderRequest(BaseModel):
    customer: Optional[CustomerIn] = None
    items: List[OrderItemIn] = []

# Ответ API
class OrderCreatedResponse(BaseModel):
    success: bool = True
    order_id: int = Field(..., alias="orderId")

    class Config:
        populate_by_name = True
