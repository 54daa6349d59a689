from fastapi import APIRouter

from app.api.routes import account, admin, applications, health, postings, settings

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(postings.router, prefix="/postings", tags=["postings"])
api_router.include_router(applications.router, prefix="/applications", tags=["applications"])
api_router.include_router(applications.saved_jobs_router, prefix="/saved-jobs", tags=["applications"])
api_router.include_router(settings.router, prefix="/settings", tags=["settings"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
api_router.include_router(account.router, prefix="/account", tags=["account"])
