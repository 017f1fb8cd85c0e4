# erp_agent/api/api.py
from fastapi import APIRouter, Depends
from erp_agent.api.deps import verify_agent_token
from erp_agent.api.endpoints import health, orders, stock, sync

api_router = APIRouter()

# /health открыт, остальное - только с токеном агента
api_router.include_router(health.router)
api_router.include_router(stock.router, dependencies=[Depends(verify_agent_token)])
api_router.include_router(orders.router, dependencies=[Depends(verify_agent_token)])
api_router.include_router(sync.router, dependencies=[Depends(verify_agent_token)])
