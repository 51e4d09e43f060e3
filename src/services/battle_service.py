"""전투 Service: Core↔Store 연결, 플레이어별 상태 머신 관리

HTTP 계층은 이 Service만 호출한다. 게임 규칙은 전부 src/core/battle에 있다.
"""

import json
import random
import threading
from pathlib import Path
from typing import Any, Callable, Optional

from src.core.battle import loadout
from src.core.battle.catalog import ItemCatalog
from src.core.battle.documents import (
    encounter_from_dict,
    foe_from_dict,
    inventory_item_to_dict,
    question_from_dict,
)
from src.core.battle.durability import get_durability_ratio
from src.core.battle.encounter import EncounterStateMachine
from src.core.battle.models import (
    BattleError,
    Character,
    EncounterDefinition,
    EncounterPhase,
    EquipmentSlot,
    InvalidTransitionError,
    InventoryItem,
    LoadoutError,
)
from src.core.battle.progression import LEVEL_CAP, LOSS_GOLD_PENALTY_RATE
from src.core.battle.stats import (
    effective_defense,
    effective_max_hp,
    player_damage,
    timer_multiplier,
)
from src.core.battle.store import BattleStore
from src.core.battle.timer import DEFAULT_TICK_SECONDS
from src.core.event_bus import EventBus, GameEvent
from src.core.event_types import EventTypes
from src.core.logging import get_logger

logger = get_logger(__name__)

LOADOUT_FIELDS = ("inventory", "equipment", "hp")
LOADOUT_LOCKED_PHASES = (EncounterPhase.INTRO, EncounterPhase.BATTLE)


class CharacterNotFoundError(BattleError):
    """등록되지 않은 owner_id"""


class BattleService:
    """캐릭터 등록 + 장비 관리 + 인카운터 세션 관리"""

    def __init__(
        self,
        store: BattleStore,
        catalog: ItemCatalog,
        event_bus: EventBus,
        *,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        autorun_timer: bool = True,
        loss_penalty_rate: float = LOSS_GOLD_PENALTY_RATE,
        level_cap: int = LEVEL_CAP,
        starter: Optional[dict[str, Any]] = None,
        rng_factory: Callable[[], random.Random] = random.Random,
    ):
        self._store = store
        self._catalog = catalog
        self._bus = event_bus
        self._tick_seconds = tick_seconds
        self._autorun_timer = autorun_timer
        self._loss_penalty_rate = loss_penalty_rate
        self._level_cap = level_cap
        self._starter = starter or {}
        self._rng_factory = rng_factory

        self._sessions: dict[str, EncounterStateMachine] = {}
        self._sessions_lock = threading.Lock()
        self._register_event_handlers()

    @property
    def catalog(self) -> ItemCatalog:
        return self._catalog

    @property
    def store(self) -> BattleStore:
        return self._store

    def _register_event_handlers(self) -> None:
        """EventBus 구독"""
        self._bus.subscribe(EventTypes.ITEM_BROKEN, self._on_item_broken)
        self._bus.subscribe(EventTypes.PERSISTENCE_FAILED, self._on_persistence_failed)

    # === 아이템 정의 ===

    def sync_items_to_store(self) -> int:
        """Catalog → Store 동기화. 서버 시작 시 호출.
        저장소에 없는 정의만 기록. 반환: 동기화된 수량.
        """
        count = 0
        for item in self._catalog.get_all():
            if self._store.get_item_definition(item.item_id) is None:
                self._store.put_item_definition(item)
                count += 1
        logger.info("Synced %d item definitions to store", count)
        return count

    def load_items_from_store(self) -> int:
        """Store에만 있는 정의를 Catalog에 추가. 반환: 추가된 수량."""
        count = 0
        for item in self._store.list_item_definitions():
            if item.item_id not in self._catalog:
                self._catalog.register(item)
                count += 1
        return count

    # === 콘텐츠 시드 ===

    def seed_content(self, path: str | Path) -> int:
        """seed_content.json 로드 (foes / questions / encounters).
        이미 존재하는 문서는 건드리지 않는다. 반환: 새로 기록된 문서 수.
        """
        path = Path(path)
        with path.open("r", encoding="utf-8") as f:
            raw = json.load(f)

        count = 0
        for foe_id, doc in raw.get("foes", {}).items():
            if self._store.get_foe(foe_id) is None:
                self._store.put_foe(foe_from_dict(foe_id, doc))
                count += 1
        for question_id, doc in raw.get("questions", {}).items():
            if self._store.get_question(question_id) is None:
                self._store.put_question(question_from_dict(question_id, doc))
                count += 1
        for encounter_id, doc in raw.get("encounters", {}).items():
            if self._store.get_encounter(encounter_id) is None:
                self._store.put_encounter(encounter_from_dict(encounter_id, doc))
                count += 1

        logger.info("Seeded %d content documents from %s", count, path)
        return count

    def list_encounters(self) -> list[EncounterDefinition]:
        return self._store.list_encounters()

    # === 캐릭터 ===

    def register_character(self, owner_id: str, name: str) -> Character:
        """신규 캐릭터 생성. 이미 있으면 기존 기록을 그대로 반환."""
        existing = self._store.get_character(owner_id)
        if existing is not None:
            return existing

        character = Character(
            owner_id=owner_id,
            name=name,
            max_hp=self._starter.get("max_hp", 15),
            hp=self._starter.get("max_hp", 15),
            base_damage=self._starter.get("base_damage", 1),
            base_defense=self._starter.get("base_defense", 0),
            class_name=self._starter.get("class_name", "Apprentice"),
        )
        self._store.create_character(character)

        self._bus.emit(
            GameEvent(
                event_type=EventTypes.CHARACTER_REGISTERED,
                data={"owner_id": owner_id, "name": name},
                source=f"register:{owner_id}",
            )
        )
        logger.info("Registered character %s (%s)", owner_id, name)
        return character

    def get_character(self, owner_id: str) -> Character:
        character = self._store.get_character(owner_id)
        if character is None:
            raise CharacterNotFoundError(f"Character not found: {owner_id}")
        return character

    def get_character_view(self, owner_id: str) -> dict[str, Any]:
        """캐릭터 + 장비 반영 유효 스탯"""
        character = self.get_character(owner_id)
        get_item = self._catalog.get
        return {
            "owner_id": character.owner_id,
            "name": character.name,
            "class_name": character.class_name,
            "level": character.level,
            "xp": character.xp,
            "gold": character.gold,
            "hp": character.hp,
            "max_hp": character.max_hp,
            "base_damage": character.base_damage,
            "base_defense": character.base_defense,
            "effective_max_hp": effective_max_hp(character, get_item),
            "effective_damage": player_damage(character, get_item),
            "effective_defense": effective_defense(character, get_item),
            "timer_multiplier": timer_multiplier(character, get_item),
            "equipment": {
                slot.value: ref for slot, ref in character.equipment.items()
            },
        }

    def grant_item(self, owner_id: str, item_id: str) -> InventoryItem:
        """인벤토리에 새 개체 추가 (전리품/관리자 지급)."""
        self._require_out_of_battle(owner_id)
        character = self.get_character(owner_id)
        try:
            instance = self._catalog.new_instance(item_id)
        except ValueError as e:
            raise LoadoutError(str(e)) from e
        character.inventory.append(instance)
        self._store.save_character(character, ("inventory",))
        logger.debug("Granted %s to %s", item_id, owner_id)
        return instance

    def get_inventory(self, owner_id: str) -> list[dict[str, Any]]:
        character = self.get_character(owner_id)
        rows = []
        for instance in character.inventory:
            definition = self._catalog.get(instance.item_id)
            row = inventory_item_to_dict(instance)
            row["name"] = definition.name if definition else instance.item_id
            row["category"] = definition.category.value if definition else None
            row["slot"] = (
                definition.slot.value if definition and definition.slot else None
            )
            row["is_broken"] = instance.is_broken
            row["durability_ratio"] = get_durability_ratio(instance)
            row["equipped"] = instance.instance_id in character.equipment.values()
            rows.append(row)
        return rows

    def get_history(self, owner_id: str) -> list[dict[str, Any]]:
        """턴 기록 (오래된 순)"""
        self.get_character(owner_id)
        return self._store.list_submissions(owner_id)

    # === 장비 관리 (전투 밖) ===

    def equip(self, owner_id: str, instance_id: str) -> EquipmentSlot:
        self._require_out_of_battle(owner_id)
        character = self.get_character(owner_id)
        slot, _previous = loadout.equip(character, instance_id, self._catalog.get)
        self._store.save_character(character, LOADOUT_FIELDS)
        return slot

    def unequip(self, owner_id: str, slot: EquipmentSlot) -> Optional[str]:
        self._require_out_of_battle(owner_id)
        character = self.get_character(owner_id)
        previous = loadout.unequip(character, slot)
        if previous is not None:
            self._store.save_character(character, LOADOUT_FIELDS)
        return previous

    def use_potion(self, owner_id: str, instance_id: str) -> int:
        """반환: 실제 회복량"""
        self._require_out_of_battle(owner_id)
        character = self.get_character(owner_id)
        healed = loadout.use_potion(character, instance_id, self._catalog.get)
        self._store.save_character(character, LOADOUT_FIELDS)
        logger.debug("%s used potion %s (+%d HP)", owner_id, instance_id, healed)
        return healed

    # === 인카운터 세션 ===

    def find_session(self, owner_id: str) -> Optional[EncounterStateMachine]:
        """진행 중인 상태 머신 조회. 없으면 None (생성하지 않음)"""
        with self._sessions_lock:
            return self._sessions.get(owner_id)

    def get_session(self, owner_id: str) -> EncounterStateMachine:
        """플레이어별 상태 머신 (없으면 생성). 등록된 캐릭터만 세션을 가진다."""
        if self.find_session(owner_id) is None:
            self.get_character(owner_id)
        with self._sessions_lock:
            machine = self._sessions.get(owner_id)
            if machine is None:
                machine = EncounterStateMachine(
                    owner_id,
                    self._store,
                    self._catalog,
                    event_bus=self._bus,
                    rng=self._rng_factory(),
                    tick_seconds=self._tick_seconds,
                    autorun_timer=self._autorun_timer,
                    loss_penalty_rate=self._loss_penalty_rate,
                    level_cap=self._level_cap,
                )
                self._sessions[owner_id] = machine
            return machine

    def require_session(self, owner_id: str) -> EncounterStateMachine:
        """진행 입력용 조회. 선택된 인카운터가 없으면 InvalidTransitionError"""
        machine = self.find_session(owner_id)
        if machine is None:
            raise InvalidTransitionError(f"No encounter selected for {owner_id}")
        return machine

    def session_view(self, owner_id: str) -> dict[str, Any]:
        """상태 스냅샷. 세션이 없으면 lobby 화면."""
        machine = self.find_session(owner_id)
        if machine is None:
            return {
                "owner_id": owner_id,
                "phase": EncounterPhase.LOBBY.value,
                "status_message": "",
                "save_failed": False,
            }
        return machine.snapshot()

    def select_encounter(self, owner_id: str, encounter_id: str) -> dict[str, Any]:
        machine = self.get_session(owner_id)
        machine.select_encounter(encounter_id)
        return machine.snapshot()

    def leave(self, owner_id: str) -> None:
        with self._sessions_lock:
            machine = self._sessions.pop(owner_id, None)
        if machine is not None:
            machine.leave()

    def shutdown(self) -> None:
        """모든 세션 타이머 정지"""
        with self._sessions_lock:
            machines = list(self._sessions.values())
            self._sessions.clear()
        for machine in machines:
            machine.leave()
        logger.info("Battle sessions closed (%d)", len(machines))

    # === 내부 ===

    def _require_out_of_battle(self, owner_id: str) -> None:
        with self._sessions_lock:
            machine = self._sessions.get(owner_id)
        # intro 단계부터 상태 머신이 캐릭터 사본을 들고 있다
        if machine is not None and machine.phase in LOADOUT_LOCKED_PHASES:
            raise InvalidTransitionError(
                f"Loadout cannot change during {machine.phase.value}"
            )

    # === 이벤트 핸들러 ===

    def _on_item_broken(self, event: GameEvent) -> None:
        logger.info(
            "Item broken: owner=%s item=%s slot=%s",
            event.data.get("owner_id"),
            event.data.get("item_id"),
            event.data.get("slot"),
        )

    def _on_persistence_failed(self, event: GameEvent) -> None:
        logger.warning(
            "Battle progress not saved for %s: %s",
            event.data.get("owner_id"),
            event.data.get("error"),
        )
