"""API v1 router configuration."""

from fastapi import APIRouter

from api.v1.routes.tags import router as tags_router

router = APIRouter()
router.include_router(tags_router)
