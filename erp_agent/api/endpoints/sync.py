# erp_agent/api/endpoints/sync.py
from fastapi import APIRouter, Depends
from erp_agent.api.deps import get_sync_loop
from erp_agent.schemas.status import SyncStatusResponse
from erp_agent.tasks.sync_loop import ChangeSyncLoop

router = APIRouter(tags=["sync"])

@router.get("/sync/status", response_model=SyncStatusResponse)
async def get_sync_status(sync_loop: ChangeSyncLoop = Depends(get_sync_loop)):
    """Статистика цикла синхронизации с момента запуска"""
    return await sync_loop.status()
