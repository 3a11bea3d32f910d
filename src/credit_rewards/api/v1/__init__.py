from fastapi import APIRouter

from .endpoints import health, observability, rewards

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(rewards.router)
router.include_router(observability.router)
