# erp_agent/api/deps.py
import secrets
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from erp_agent.core.config import Settings
from erp_agent.database import Store
from erp_agent.services.order_ingestor import OrderIngestor
from erp_agent.services.stock_query import StockQuery
from erp_agent.tasks.sync_loop import ChangeSyncLoop

# Bearer схема; auto_error=False - ответ 401 формируем сами
bearer_scheme = HTTPBearer(auto_error=False)

def get_settings(request: Request) -> Settings:
    return request.app.state.settings

def get_store(request: Request) -> Store:
    return request.app.state.store

def get_stock_query(request: Request) -> StockQuery:
    return request.app.state.stock_query

def get_order_ingestor(request: Request) -> OrderIngestor:
    return request.app.state.order_ingestor

def get_sync_loop(request: Request) -> ChangeSyncLoop:
    return request.app.state.sync_loop

async def verify_agent_token(
    settings: Settings = Depends(get_settings),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> None:
    """Проверка токена агента (все маршруты кроме /health)"""
    if credentials is None or not secrets.compare_digest(
        credentials.credentials.encode(), settings.AGENT_TOKEN.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing token",
            headers={"WWW-Authenticate": "Bearer"},
        )

async def require_store(store: Store = Depends(get_store)) -> Store:
    """База ERP должна быть доступна, иначе 503"""
    await store.ensure_available()
    return store
