import logging
from typing import Any, Dict

from fastapi import Depends, FastAPI, HTTPException, status
from sqlalchemy import text

from .admin_routes import router as admin_router
from .config import Settings, get_settings
from .db.monitoring import get_pool_snapshot
from .db.session import get_engine
from .logging_config import configure_logging


configure_logging()
logger = logging.getLogger(__name__)
app = FastAPI(title="Studyline Scheduler", version="0.1.0")
app.include_router(admin_router)

settings_snapshot = get_settings()
logger.info("Scheduler starting; closeout cron=%s tz=%s", settings_snapshot.closeout_cron, settings_snapshot.closeout_timezone)
logger.info("Database URL configured: %s", bool(settings_snapshot.database_url))


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    return {"status": "ok", "closeout_enabled": settings.closeout_enabled}


@app.get("/healthz/database")
def database_health() -> Dict[str, Any]:
    try:
        engine = get_engine()
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001
        logger.warning("Database health check failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"status": "ok", "pool": get_pool_snapshot(engine)}
