from fastapi import APIRouter
from servicehub.api.endpoints import auth, services, chat, budgets, bookings

api_router = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(services.router, prefix="/services", tags=["services"])
api_router.include_router(chat.router, tags=["chat"])
api_router.include_router(budgets.router, tags=["budgets"])
api_router.include_router(bookings.router, prefix="/bookings", tags=["bookings"])

@api_router.get("/health")
def health_check():
    return {"status": "ok"}
