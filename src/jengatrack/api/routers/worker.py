"""Worker/internal routes (APP_ROLE=worker)."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/internal/health")
def internal_health(request: Request) -> dict:
    """Internal health with the loaded rule set version."""
    config = request.app.state.engine_config
    return {
        "status": "ok",
        "subsystem": "internal",
        "pattern_version": config.pattern_version,
        "categories": len(config.category_table),
    }
