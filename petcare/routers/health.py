# petcare/routers/health.py
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import get_db
from ..timeutils import utcnow

router = APIRouter(
    prefix="/health",
    tags=["Health Checks"],
    responses={404: {"description": "Not found"}},
)

logger = logging.getLogger(__name__)


@router.get("")
def health_check(db: Session = Depends(get_db)):
    """Liveness plus a database round trip."""
    settings = get_settings()
    body = {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": utcnow().isoformat(),
        "database": "ok",
    }
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check database probe failed: {e}")
        body.update(status="degraded", database="unavailable")
        return JSONResponse(status_code=503, content=body)
    return body
