"""API route registration."""

from fastapi import APIRouter

from strmsync.api.routes import config, file_history, health, notifications, run_logs, tasks, webhook

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(tasks.router, prefix="/tasks", tags=["tasks"])
api_router.include_router(run_logs.router, prefix="/run-logs", tags=["run-logs"])
api_router.include_router(file_history.router, prefix="/file-history", tags=["file-history"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
api_router.include_router(config.router, prefix="/config", tags=["config"])
api_router.include_router(webhook.router, prefix="/webhook", tags=["webhook"])
