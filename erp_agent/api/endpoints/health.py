"""
Проверка состояния агента.
"""

from fastapi import APIRouter, Depends

from erp_agent.api.deps import get_store
from erp_agent.database import Store
from erp_agent.schemas.status import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(store: Store = Depends(get_store)):
    """Статус агента и соединения с базой ERP (без авторизации)"""
    return HealthResponse(status="ok", store_connected=await store.ping())
