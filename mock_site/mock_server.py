# mock_site/mock_server.py
from fastapi import FastAPI, HTTPException, Depends, Header
from datetime import datetime
from typing import List, Optional, Dict, Any
import uvicorn
from pydantic import BaseModel

app = FastAPI(title="Mock e-commerce site", version="1.0")

# Хранилище данных в памяти
received_batches: List[Dict[str, Any]] = []
stock_by_sku: Dict[str, Dict[str, Any]] = {}
sync_tokens = ["test-sync-token", "demo-sync-token"]

class ProductUpdate(BaseModel):
    sku: str
    name: Optional[str] = None
    total_stock: int
    price: Optional[float] = None

class StockUpdates(BaseModel):
    updates: List[ProductUpdate]

# Dependency для проверки токена синхронизации
def verify_sync_token(authorization: Optional[str] = Header(None)):
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = authorization[len("Bearer "):]
    if token not in sync_tokens:
        raise HTTPException(status_code=401, detail="Invalid sync token")
    return token

def reset():
    """Очистка состояния между тестами"""
    received_batches.clear()
    stock_by_sku.clear()

@app.post("/api/stock-updates")
async def receive_stock_updates(
    payload: StockUpdates,
    token: str = Depends(verify_sync_token)
):
    """Прием пакета изменений (мок). Повторная доставка - last-write-wins по sku"""
    received_at = datetime.now().isoformat()
    received_batches.append({
        "received_at": received_at,
        "updates": [item.model_dump() for item in payload.updates]
    })

    for item in payload.updates:
        stock_by_sku[item.sku] = {**item.model_dump(), "updated_at": received_at}

    return {"success": True, "received": len(payload.updates)}

@app.get("/api/stock/{sku}")
async def get_site_stock(sku: str):
    """Текущий остаток на стороне сайта (мок)"""
    item = stock_by_sku.get(sku)
    if not item:
        raise HTTPException(status_code=404, detail="Product not found")
    return item

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8080)
