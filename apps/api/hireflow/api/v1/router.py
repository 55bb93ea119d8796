from fastapi import APIRouter

from hireflow.api.v1.dashboard import router as dashboard_router
from hireflow.api.v1.resumes import router as resumes_router
from hireflow.api.v1.webhooks import router as webhooks_router

router = APIRouter()
router.include_router(resumes_router)
router.include_router(webhooks_router)
router.include_router(dashboard_router)
