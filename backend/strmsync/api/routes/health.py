"""Health check."""

from fastapi import APIRouter

from strmsync import __version__
from strmsync.schemas.system import HealthResponse
from strmsync.services import get_config_store

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Liveness plus whether the remote index is configured."""
    try:
        ready = get_config_store().is_ready()
    except RuntimeError:
        ready = False
    return HealthResponse(version=__version__, config_ready=ready)
