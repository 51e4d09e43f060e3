"""Factory for creating BattleStore instances."""

from typing import Optional

from sqlalchemy.orm import sessionmaker

from src.config import settings
from src.core.battle.store import BattleStore
from src.core.logging import get_logger
from src.services.store.memory import MemoryBattleStore
from src.services.store.sql import SqlBattleStore

logger = get_logger(__name__)


def get_battle_store(
    backend: Optional[str] = None,
    session_factory: Optional[sessionmaker] = None,
) -> BattleStore:
    """Get a BattleStore instance.

    Args:
        backend: Optional backend name ("sql" | "memory"). If not specified,
                 uses STORE_BACKEND from config.
        session_factory: Session factory for the SQL backend. Defaults to
                 the application's SessionLocal.

    Returns:
        A BattleStore instance.
    """
    name = backend or settings.STORE_BACKEND

    if name == "memory":
        logger.debug("Using MemoryBattleStore")
        return MemoryBattleStore()

    if name == "sql":
        if session_factory is None:
            from src.db.database import SessionLocal

            session_factory = SessionLocal
        logger.debug("Using SqlBattleStore")
        return SqlBattleStore(
            session_factory,
            default_time_limit=settings.DEFAULT_TIME_LIMIT_SECONDS,
        )

    raise ValueError(f"Unknown store backend: {name}")
