"""Health check: service status, database reachability, and token lifetimes for clients."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pgdesk.core.config import settings
from pgdesk.core.database import check_db_connected, get_db
from pgdesk.schemas.health import HealthResponse

router = APIRouter()


@router.get("", response_model=HealthResponse)
def get_health(db: Annotated[Session, Depends(get_db)]) -> HealthResponse:
    """Used by load balancers and by clients that want to schedule refreshes."""
    db_status = "connected" if check_db_connected(db) else "disconnected"
    return HealthResponse(
        environment=settings.APP_ENV,
        database=db_status,
        access_token_minutes=settings.JWT_ACCESS_EXPIRE_MINUTES,
        refresh_token_days=settings.JWT_REFRESH_EXPIRE_DAYS,
    )
