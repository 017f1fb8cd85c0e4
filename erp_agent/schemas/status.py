# erp_agent/schemas/status.py
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

class HealthResponse(BaseModel):
    status: str = "ok"
    store_connected: bool = Field(..., alias="storeConnected")

    class Config:
        populate_by_name = True

class StockResponse(BaseModel):
    sku: str
    stock: int

class SyncStatusResponse(BaseModel):
    enabled: bool
    state: str
    total_cycles: int
    successful_cycles: int
    failed_cycles: int
    skipped_cycles: int
    products_sent: int
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    cursor: Optional[datetime] = None
