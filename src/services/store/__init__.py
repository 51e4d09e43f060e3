"""Battle store implementations."""

from src.services.store.factory import get_battle_store
from src.services.store.memory import MemoryBattleStore
from src.services.store.sql import SqlBattleStore

__all__ = [
    "MemoryBattleStore",
    "SqlBattleStore",
    "get_battle_store",
]
