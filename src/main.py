"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI

from src.api.battle import router as battle_router
from src.api.health import router as health_router
from src.config import settings
from src.core.battle.catalog import ItemCatalog
from src.core.event_bus import EventBus
from src.core.logging import get_logger, setup_logging
from src.db.database import SessionLocal, engine as db_engine
from src.db.models import Base
from src.services.battle_service import BattleService
from src.services.store import get_battle_store

setup_logging(settings.LOG_LEVEL, sql_echo=settings.DEBUG)
logger = get_logger(__name__)


def build_battle_service() -> BattleService:
    """설정값으로 Store + Catalog + BattleService 조립"""
    store = get_battle_store(settings.STORE_BACKEND, session_factory=SessionLocal)

    catalog = ItemCatalog()
    catalog.load_from_json(settings.SEED_ITEMS_PATH)

    service = BattleService(
        store=store,
        catalog=catalog,
        event_bus=EventBus(),
        tick_seconds=settings.TIMER_TICK_SECONDS,
        loss_penalty_rate=settings.LOSS_GOLD_PENALTY_RATE,
        level_cap=settings.LEVEL_CAP,
        starter={
            "max_hp": settings.STARTER_MAX_HP,
            "base_damage": settings.STARTER_BASE_DAMAGE,
            "base_defense": settings.STARTER_BASE_DEFENSE,
            "class_name": settings.STARTER_CLASS_NAME,
        },
    )
    service.sync_items_to_store()
    service.load_items_from_store()
    if Path(settings.SEED_CONTENT_PATH).exists():
        service.seed_content(settings.SEED_CONTENT_PATH)
    return service


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown events."""
    # DB 테이블 생성
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=db_engine)
    logger.info("Database tables created.")

    logger.info("Initializing BattleService (store=%s)...", settings.STORE_BACKEND)
    battle_service = build_battle_service()
    app.state.battle_service = battle_service
    logger.info("BattleService initialized.")

    yield

    # 종료 시 정리
    logger.info("Shutting down...")
    battle_service.shutdown()


app = FastAPI(title="Math RPG Battle", lifespan=lifespan)

app.include_router(health_router)
app.include_router(battle_router)
