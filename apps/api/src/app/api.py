from fastapi import APIRouter

from app.modules.access_applications.admin_router import router as access_admin_router
from app.modules.access_applications.router import router as access_applications_router

api_router = APIRouter()

api_router.include_router(
    access_applications_router, prefix="/applications", tags=["Access Applications"]
)

api_router.include_router(
    access_admin_router,
    prefix="/admin",
    tags=["Admin - Access Applications"],
)
