"""Health check endpoint."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.db.database import get_db

router = APIRouter()


@router.get("/health")
def health_check(request: Request, db: Session = Depends(get_db)) -> dict[str, str]:
    """Return application, database and battle store status."""
    service = getattr(request.app.state, "battle_service", None)
    store = type(service.store).__name__ if service is not None else "uninitialized"
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok", "database": "connected", "store": store}
    except SQLAlchemyError:
        return {"status": "error", "database": "disconnected", "store": store}
