"""BattleService 테스트: 등록, 장비 관리, 시드, 세션 관리"""

import random
from pathlib import Path

import pytest

from src.core.battle.catalog import ItemCatalog
from src.core.battle.documents import item_from_dict
from src.core.battle.models import (
    EncounterNotFoundError,
    EncounterPhase,
    EquipmentSlot,
    InvalidTransitionError,
    LoadoutError,
    LossReason,
)
from src.core.event_bus import EventBus
from src.core.event_types import EventTypes
from src.services.battle_service import BattleService, CharacterNotFoundError
from src.services.store.memory import MemoryBattleStore
from src.services.store.sql import SqlBattleStore

SEED_ITEMS_PATH = Path("src/data/seed_items.json")
SEED_CONTENT_PATH = Path("src/data/seed_content.json")


def _build(store, bus: EventBus | None = None, **kwargs) -> BattleService:
    catalog = ItemCatalog()
    catalog.load_from_json(SEED_ITEMS_PATH)
    service = BattleService(
        store,
        catalog,
        bus or EventBus(),
        autorun_timer=False,
        rng_factory=lambda: random.Random(3),
        **kwargs,
    )
    service.sync_items_to_store()
    service.seed_content(SEED_CONTENT_PATH)
    return service


def _wrong_choice(service: BattleService, owner_id: str) -> int:
    question_id = service.get_session(owner_id).snapshot()["question"]["question_id"]
    question = service.store.get_question(question_id)
    return (question.correct_index + 1) % len(question.choices)


def _right_choice(service: BattleService, owner_id: str) -> int:
    question_id = service.get_session(owner_id).snapshot()["question"]["question_id"]
    return service.store.get_question(question_id).correct_index


@pytest.fixture()
def bus() -> EventBus:
    return EventBus()


@pytest.fixture()
def store() -> MemoryBattleStore:
    return MemoryBattleStore()


@pytest.fixture()
def service(store, bus) -> BattleService:
    svc = _build(store, bus)
    yield svc
    svc.shutdown()


# ── 시드 ──────────────────────────────────────────────────────


class TestSeeding:
    def test_seed_counts(self, store) -> None:
        svc = _build(store)
        assert len(store.list_item_definitions()) == 6
        assert [e.encounter_id for e in svc.list_encounters()] == ["golem-gate", "meadow-slime"]
        # 두 번째 시드는 기존 문서를 건드리지 않는다
        assert svc.seed_content(SEED_CONTENT_PATH) == 0
        assert svc.sync_items_to_store() == 0

    def test_seed_first_time(self) -> None:
        catalog = ItemCatalog()
        svc = BattleService(MemoryBattleStore(), catalog, EventBus(), autorun_timer=False)
        assert svc.seed_content(SEED_CONTENT_PATH) == 11

    def test_load_items_from_store(self, service, store) -> None:
        store.put_item_definition(
            item_from_dict({"id": "ruler", "name": "Ruler", "type": "weapon"})
        )
        assert service.load_items_from_store() == 1
        assert "ruler" in service.catalog


# ── 캐릭터 ────────────────────────────────────────────────────


class TestRegistration:
    def test_register_uses_starter_stats(self, store) -> None:
        svc = _build(store, starter={"max_hp": 20, "base_damage": 2, "class_name": "Scholar"})
        hero = svc.register_character("u1", "Ana")
        assert (hero.max_hp, hero.hp, hero.base_damage) == (20, 20, 2)
        assert store.get_character("u1").class_name == "Scholar"

    def test_register_is_idempotent(self, service, bus) -> None:
        events = []
        bus.subscribe(EventTypes.CHARACTER_REGISTERED, events.append)
        service.register_character("u1", "Ana")
        again = service.register_character("u1", "Someone Else")
        assert again.name == "Ana"
        assert len(events) == 1

    def test_each_owner_emits(self, service, bus) -> None:
        events = []
        bus.subscribe(EventTypes.CHARACTER_REGISTERED, events.append)
        service.register_character("u1", "Ana")
        service.register_character("u2", "Bo")
        assert [e.data["owner_id"] for e in events] == ["u1", "u2"]

    def test_missing_character(self, service) -> None:
        with pytest.raises(CharacterNotFoundError):
            service.get_character("ghost")
        with pytest.raises(CharacterNotFoundError):
            service.select_encounter("ghost", "meadow-slime")

    def test_character_view_reflects_equipment(self, service) -> None:
        service.register_character("u1", "Ana")
        sword = service.grant_item("u1", "sword-wood")
        service.equip("u1", sword.instance_id)
        view = service.get_character_view("u1")
        assert view["effective_damage"] == 3
        assert view["effective_max_hp"] == 15
        assert view["equipment"]["mainHand"] == sword.instance_id


# ── 장비 관리 ─────────────────────────────────────────────────


class TestLoadout:
    @pytest.fixture(autouse=True)
    def _hero(self, service) -> None:
        service.register_character("u1", "Ana")

    def test_grant_unknown_item(self, service) -> None:
        with pytest.raises(LoadoutError):
            service.grant_item("u1", "nope")

    def test_grant_persists(self, service, store) -> None:
        inst = service.grant_item("u1", "armor-cloth")
        assert [i.instance_id for i in store.get_character("u1").inventory] == [inst.instance_id]

    def test_equip_and_inventory_view(self, service) -> None:
        armor = service.grant_item("u1", "armor-cloth")
        potion = service.grant_item("u1", "potion-small")
        assert service.equip("u1", armor.instance_id) == EquipmentSlot.ARMOR
        rows = {r["item_id"]: r for r in service.get_inventory("u1")}
        assert rows["armor-cloth"]["equipped"] is True
        assert rows["armor-cloth"]["slot"] == "armor"
        assert rows["potion-small"]["equipped"] is False
        assert rows["potion-small"]["category"] == "potion"
        assert rows["potion-small"]["instance_id"] == potion.instance_id

    def test_unequip(self, service, store) -> None:
        armor = service.grant_item("u1", "armor-cloth")
        service.equip("u1", armor.instance_id)
        assert service.unequip("u1", EquipmentSlot.ARMOR) == armor.instance_id
        assert store.get_character("u1").equipment[EquipmentSlot.ARMOR] is None
        assert service.unequip("u1", EquipmentSlot.ARMOR) is None

    def test_use_potion(self, service, store) -> None:
        hero = store.get_character("u1")
        hero.hp = 2
        store.save_character(hero, ("hp",))
        potion = service.grant_item("u1", "potion-small")
        assert service.use_potion("u1", potion.instance_id) == 10
        saved = store.get_character("u1")
        assert saved.hp == 12
        assert saved.inventory == []

    def test_equipping_unequippable_item(self, service) -> None:
        potion = service.grant_item("u1", "potion-small")
        with pytest.raises(LoadoutError):
            service.equip("u1", potion.instance_id)

    def test_loadout_locked_during_battle(self, service) -> None:
        armor = service.grant_item("u1", "armor-cloth")
        service.equip("u1", armor.instance_id)
        service.select_encounter("u1", "meadow-slime")
        service.get_session("u1").begin()
        with pytest.raises(InvalidTransitionError):
            service.unequip("u1", EquipmentSlot.ARMOR)
        with pytest.raises(InvalidTransitionError):
            service.grant_item("u1", "potion-small")

    def test_loadout_locked_during_intro(self, service, store) -> None:
        potion = service.grant_item("u1", "potion-small")
        sword = service.grant_item("u1", "sword-wood")
        service.select_encounter("u1", "meadow-slime")
        with pytest.raises(InvalidTransitionError):
            service.use_potion("u1", potion.instance_id)
        with pytest.raises(InvalidTransitionError):
            service.equip("u1", sword.instance_id)
        with pytest.raises(InvalidTransitionError):
            service.grant_item("u1", "armor-cloth")

        machine = service.get_session("u1")
        machine.begin()
        machine.answer(_right_choice(service, "u1"))
        saved = store.get_character("u1")
        assert sorted(i.instance_id for i in saved.inventory) == sorted(
            [potion.instance_id, sword.instance_id]
        )
        assert saved.equipment[EquipmentSlot.MAIN_HAND] is None

    def test_equip_after_leave_counts_in_next_battle(self, service) -> None:
        sword = service.grant_item("u1", "sword-wood")
        service.select_encounter("u1", "meadow-slime")
        service.leave("u1")
        service.equip("u1", sword.instance_id)

        service.select_encounter("u1", "meadow-slime")
        machine = service.get_session("u1")
        machine.begin()
        machine.answer(_right_choice(service, "u1"))
        assert machine.state.last_damage_dealt == 3


# ── 세션 ──────────────────────────────────────────────────────


class TestSessions:
    @pytest.fixture(autouse=True)
    def _hero(self, service) -> None:
        service.register_character("u1", "Ana")

    def test_select_returns_snapshot(self, service) -> None:
        view = service.select_encounter("u1", "meadow-slime")
        assert view["phase"] == "intro"
        assert view["foe"]["name"] == "Fraction Slime"
        assert view["total_turns"] == 3

    def test_unknown_encounter(self, service) -> None:
        with pytest.raises(EncounterNotFoundError):
            service.select_encounter("u1", "nowhere")
        assert service.get_session("u1").phase == EncounterPhase.LOBBY

    def test_session_reused_until_leave(self, service) -> None:
        machine = service.get_session("u1")
        assert service.get_session("u1") is machine
        service.leave("u1")
        assert service.get_session("u1") is not machine

    def test_unregistered_owner_gets_no_session(self, service) -> None:
        for i in range(5):
            owner_id = f"ghost-{i}"
            with pytest.raises(CharacterNotFoundError):
                service.get_session(owner_id)
            assert service.session_view(owner_id)["phase"] == "lobby"
            assert service.find_session(owner_id) is None

    def test_inputs_without_session_conflict(self, service) -> None:
        with pytest.raises(InvalidTransitionError):
            service.require_session("u1")
        assert service.find_session("u1") is None
        service.select_encounter("u1", "meadow-slime")
        assert service.require_session("u1") is service.find_session("u1")

    def test_shutdown_stops_sessions(self, service) -> None:
        service.select_encounter("u1", "meadow-slime")
        machine = service.get_session("u1")
        machine.begin()
        service.shutdown()
        assert machine.phase == EncounterPhase.LOBBY
        assert not machine.timer.is_running

    def test_loss_applies_penalty(self, service, store) -> None:
        store.increment_character("u1", "gold", 50)
        service.select_encounter("u1", "golem-gate")
        machine = service.get_session("u1")
        machine.begin()
        for _ in range(2):
            machine.answer(_wrong_choice(service, "u1"))
            machine.acknowledge()
        machine.answer(_wrong_choice(service, "u1"))

        assert machine.phase == EncounterPhase.LOST
        assert machine.state.loss_reason == LossReason.HP_DEPLETED
        saved = store.get_character("u1")
        assert saved.gold == 40
        assert saved.hp == 15

    def test_save_failure_keeps_playing(self, service, store) -> None:
        service.select_encounter("u1", "meadow-slime")
        machine = service.get_session("u1")
        machine.begin()
        store.fail_writes = True
        machine.answer(_right_choice(service, "u1"))
        view = machine.snapshot()
        assert view["save_failed"] is True
        assert view["phase"] == "battle"
        assert "Could not save progress." in view["status_message"]

    def test_history_records_each_turn(self, service) -> None:
        service.select_encounter("u1", "meadow-slime")
        machine = service.get_session("u1")
        machine.begin()
        machine.skip()
        machine.answer(_wrong_choice(service, "u1"))
        history = service.get_history("u1")
        assert [h["outcome"] for h in history] == ["skipped", "wrong"]
        assert history[0]["selected_index"] is None
        assert history[1]["question_id"] == "frac-2"


# ── SQL 저장소 경유 전체 흐름 ─────────────────────────────────


class TestSqlFlow:
    def test_full_victory(self, session_factory) -> None:
        store = SqlBattleStore(session_factory)
        service = _build(store)
        service.register_character("u1", "Ana")
        sword = service.grant_item("u1", "sword-wood")
        service.equip("u1", sword.instance_id)

        service.select_encounter("u1", "meadow-slime")
        machine = service.get_session("u1")
        machine.begin()
        assert machine.snapshot()["question"]["question_id"] == "frac-1"
        machine.answer(_right_choice(service, "u1"))
        machine.answer(_right_choice(service, "u1"))

        assert machine.phase == EncounterPhase.WON
        saved = store.get_character("u1")
        assert (saved.xp, saved.gold) == (40, 10)
        assert sorted(i.item_id for i in saved.inventory) == ["potion-small", "sword-wood"]
        assert saved.equipped_instance(EquipmentSlot.MAIN_HAND).durability == 18
        assert [s["outcome"] for s in store.list_submissions("u1")] == ["correct", "correct"]
        service.shutdown()
