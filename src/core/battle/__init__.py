"""전투 인카운터 Core: 순수 Python, DB 무관"""

from .catalog import ItemCatalog
from .encounter import EncounterStateMachine
from .models import (
    ActiveEncounterState,
    BattleError,
    BattlePersistenceError,
    Character,
    EncounterConfigError,
    EncounterDefinition,
    EncounterNotFoundError,
    EncounterPhase,
    EquipmentSlot,
    Foe,
    InvalidTransitionError,
    InventoryItem,
    ItemCategory,
    ItemDefinition,
    LoadoutError,
    LossReason,
    Question,
    RewardSummary,
    StatModifier,
    TurnOutcome,
    TurnState,
)
from .store import BattleStore
from .timer import TurnTimer

__all__ = [
    "ItemCatalog",
    "EncounterStateMachine",
    "ActiveEncounterState",
    "BattleError",
    "BattlePersistenceError",
    "Character",
    "EncounterConfigError",
    "EncounterDefinition",
    "EncounterNotFoundError",
    "EncounterPhase",
    "EquipmentSlot",
    "Foe",
    "InvalidTransitionError",
    "InventoryItem",
    "ItemCategory",
    "ItemDefinition",
    "LoadoutError",
    "LossReason",
    "Question",
    "RewardSummary",
    "StatModifier",
    "TurnOutcome",
    "TurnState",
    "BattleStore",
    "TurnTimer",
]
