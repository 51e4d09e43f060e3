"""전투 코어 테스트 공용 fixture"""

import random

import pytest

from src.core.battle.catalog import ItemCatalog
from src.core.battle.documents import item_from_dict
from src.core.battle.encounter import EncounterStateMachine
from src.core.battle.models import (
    Character,
    EncounterDefinition,
    Foe,
    PromptType,
    Question,
)
from src.core.event_bus import EventBus
from src.services.store.memory import MemoryBattleStore

TEST_ITEMS = [
    {"id": "sword", "name": "Sword", "type": "weapon",
     "stats": {"damage": {"flat": 3, "mult": 1.0}}, "max_durability": 3},
    {"id": "great-axe", "name": "Great Axe", "type": "weapon",
     "stats": {"damage": {"flat": 1, "mult": 1.5}}},
    {"id": "wand", "name": "Hourglass Wand", "type": "weapon",
     "stats": {"damage": 1, "timeFactor": 1.5}, "max_durability": 2},
    {"id": "tunic", "name": "Tunic", "type": "armor",
     "stats": {"defense": 1}, "max_durability": 2},
    {"id": "plate", "name": "Plate", "type": "armor",
     "stats": {"defense": {"flat": 3, "mult": 1.0}}},
    {"id": "buckler", "name": "Buckler", "type": "armor", "slot": "offHand",
     "stats": {"defense": {"flat": 1, "mult": 1.5}}},
    {"id": "circlet", "name": "Circlet", "type": "armor", "slot": "head",
     "stats": {"max_hp": {"flat": 5, "mult": 2.0}}, "max_durability": 4},
    {"id": "potion", "name": "Potion", "type": "potion", "stats": {"heal": 10}},
    {"id": "trinket", "name": "Trinket", "type": "misc"},
]


@pytest.fixture()
def catalog() -> ItemCatalog:
    return ItemCatalog([item_from_dict(raw) for raw in TEST_ITEMS])


@pytest.fixture()
def bus() -> EventBus:
    return EventBus()


@pytest.fixture()
def store() -> MemoryBattleStore:
    """적 1종 + 문제 3개 + 인카운터 1개 + 캐릭터 hero"""
    s = MemoryBattleStore()
    s.put_foe(Foe(foe_id="slime", name="Slime", max_hp=10, attack_damage=3, defense=0))
    for i in range(3):
        s.put_question(
            Question(
                question_id=f"q{i}",
                prompt_type=PromptType.TEXT,
                prompt=f"{i} + 1 = ?",
                choices=(str(i), str(i + 1), str(i + 2)),
                correct_index=1,
                time_limit=10.0,
                tags=("add",),
                order=i,
            )
        )
    s.put_encounter(
        EncounterDefinition(
            encounter_id="meadow",
            title="Meadow",
            foe_ids=("slime",),
            question_tags=("add",),
            win_reward_xp=50,
            win_reward_gold=10,
            win_item_ids=("potion",),
            shuffle_questions=False,
        )
    )
    s.create_character(Character(owner_id="hero", name="Hero", gold=50))
    return s


@pytest.fixture()
def make_machine(store, catalog, bus):
    """수동 tick 타이머를 쓰는 상태 머신 생성기"""

    def _make(owner_id: str = "hero", **kwargs) -> EncounterStateMachine:
        return EncounterStateMachine(
            owner_id,
            store,
            catalog,
            event_bus=bus,
            rng=random.Random(7),
            autorun_timer=False,
            **kwargs,
        )

    return _make
