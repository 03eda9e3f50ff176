from fastapi import APIRouter

from visibility_report.api.v1.reports import router as reports_router

api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(reports_router)
