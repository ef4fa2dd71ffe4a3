from fastapi import APIRouter
from finboard.routes import subscriptions, transactions

api_router = APIRouter()

api_router.include_router(subscriptions.router, prefix="/subscriptions", tags=["subscriptions"])
api_router.include_router(transactions.router, prefix="/transactions", tags=["transactions"])


@api_router.get("/health")
def api_health():
    return {"status": "healthy"}
