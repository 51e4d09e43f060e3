"""SqlBattleStore 통합 테스트 (인메모리 SQLite + StaticPool)"""

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.core.battle.documents import item_from_dict
from src.core.battle.models import (
    BattlePersistenceError,
    Character,
    EncounterDefinition,
    EquipmentSlot,
    Foe,
    InventoryItem,
    PromptType,
    Question,
    TurnOutcome,
)
from src.db.models import QuestionTagModel, SubmissionModel
from src.services.store import MemoryBattleStore, SqlBattleStore, get_battle_store


@pytest.fixture()
def store(session_factory) -> SqlBattleStore:
    return SqlBattleStore(session_factory)


def _question(qid: str, tags: tuple[str, ...], **kwargs) -> Question:
    defaults = dict(
        question_id=qid,
        prompt_type=PromptType.TEXT,
        prompt=f"{qid}?",
        choices=("a", "b", "c"),
        correct_index=2,
        time_limit=15.0,
        tags=tags,
    )
    defaults.update(kwargs)
    return Question(**defaults)


class TestCharacters:
    def test_create_and_get(self, store) -> None:
        hero = Character(owner_id="u1", name="Ana", gold=5)
        hero.inventory.append(
            InventoryItem(item_id="sword", instance_id="i1", obtained_at=1, durability=3, max_durability=3)
        )
        hero.equipment[EquipmentSlot.MAIN_HAND] = "i1"
        store.create_character(hero)

        loaded = store.get_character("u1")
        assert loaded == hero
        assert loaded is not hero

    def test_missing_character(self, store) -> None:
        assert store.get_character("ghost") is None

    def test_save_merges_named_fields_only(self, store) -> None:
        store.create_character(Character(owner_id="u1", name="Ana", gold=5, hp=15))
        local = store.get_character("u1")
        local.hp = 4
        local.gold = 999
        store.save_character(local, ("hp",))

        loaded = store.get_character("u1")
        assert loaded.hp == 4
        assert loaded.gold == 5

    def test_save_creates_missing_document(self, store) -> None:
        store.save_character(Character(owner_id="u2", name="Bo", hp=9), ("hp",))
        assert store.get_character("u2").hp == 9

    def test_increment(self, store) -> None:
        store.create_character(Character(owner_id="u1", name="Ana", gold=10))
        assert store.increment_character("u1", "gold", 15) == 25
        assert store.increment_character("u1", "gold", -5) == 20
        assert store.increment_character("u1", "xp", 40) == 40
        assert store.get_character("u1").gold == 20

    def test_increment_missing_character(self, store) -> None:
        with pytest.raises(BattlePersistenceError):
            store.increment_character("ghost", "gold", 1)

    def test_increment_non_counter_rejected(self, store) -> None:
        store.create_character(Character(owner_id="u1", name="Ana"))
        with pytest.raises(ValueError):
            store.increment_character("u1", "hp", 1)


class TestContent:
    def test_item_roundtrip(self, store) -> None:
        item = item_from_dict(
            {"id": "wand", "name": "Wand", "type": "weapon",
             "stats": {"damage": 1, "timeFactor": 1.5}, "maxDurability": 4}
        )
        store.put_item_definition(item)
        assert store.get_item_definition("wand") == item
        assert store.list_item_definitions() == [item]
        assert store.get_item_definition("nope") is None

    def test_foe_and_encounter(self, store) -> None:
        foe = Foe(foe_id="slime", name="Slime", max_hp=10, attack_damage=3, defense=1)
        store.put_foe(foe)
        enc = EncounterDefinition(
            encounter_id="meadow",
            title="Meadow",
            foe_ids=("slime",),
            question_tags=("add", "sub"),
            win_reward_xp=20,
            win_item_ids=("potion",),
            time_multiplier=0.75,
            visual={"background": "meadow.png"},
        )
        store.put_encounter(enc)
        assert store.get_foe("slime") == foe
        assert store.get_encounter("meadow") == enc
        assert [e.encounter_id for e in store.list_encounters()] == ["meadow"]

    def test_question_prompt_columns(self, store) -> None:
        q = _question("q1", ("alg",), prompt_type=PromptType.LATEX, prompt="x^2", order=3)
        store.put_question(q)
        assert store.get_question("q1") == q

    def test_query_by_single_tag(self, store) -> None:
        store.put_question(_question("q2", ("add",)))
        store.put_question(_question("q1", ("add", "sub")))
        store.put_question(_question("q3", ("mul",)))
        assert [q.question_id for q in store.query_questions(["add"])] == ["q1", "q2"]

    def test_query_any_of_tags_no_duplicates(self, store) -> None:
        store.put_question(_question("q1", ("add", "sub")))
        store.put_question(_question("q2", ("sub",)))
        store.put_question(_question("q3", ("mul",)))
        ids = [q.question_id for q in store.query_questions(["add", "sub"])]
        assert ids == ["q1", "q2"]

    def test_query_no_tags(self, store) -> None:
        store.put_question(_question("q1", ("add",)))
        assert store.query_questions([]) == []

    def test_reput_question_updates_tags(self, store, db_session) -> None:
        store.put_question(_question("q1", ("add", "sub")))
        store.put_question(_question("q1", ("sub", "mul")))
        tags = db_session.scalars(
            select(QuestionTagModel.tag).where(QuestionTagModel.question_id == "q1")
        ).all()
        assert sorted(tags) == ["mul", "sub"]
        assert store.query_questions(["add"]) == []


class TestSubmissions:
    def test_record(self, store, db_session) -> None:
        store.record_submission("u1", "meadow", "q1", 2, TurnOutcome.CORRECT)
        store.record_submission("u1", "meadow", "q2", None, TurnOutcome.TIMEOUT)
        rows = db_session.scalars(select(SubmissionModel).order_by(SubmissionModel.id)).all()
        assert [(r.question_id, r.outcome, r.is_correct) for r in rows] == [
            ("q1", "correct", True),
            ("q2", "timeout", False),
        ]
        assert store.list_submissions("u1")[1]["selected_index"] is None


class TestFailures:
    def test_sql_error_becomes_persistence_error(self) -> None:
        # 스키마가 없는 엔진: 모든 쿼리가 OperationalError
        empty = create_engine(
            "sqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        store = SqlBattleStore(sessionmaker(bind=empty))
        with pytest.raises(BattlePersistenceError):
            store.save_character(Character(owner_id="u1", name="Ana"), ("hp",))
        with pytest.raises(BattlePersistenceError):
            store.get_character("u1")
        empty.dispose()


class TestFactory:
    def test_memory_backend(self) -> None:
        assert isinstance(get_battle_store("memory"), MemoryBattleStore)

    def test_sql_backend_uses_given_factory(self, session_factory) -> None:
        store = get_battle_store("sql", session_factory=session_factory)
        assert isinstance(store, SqlBattleStore)
        store.create_character(Character(owner_id="u1", name="Ana"))
        assert store.get_character("u1").name == "Ana"

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError):
            get_battle_store("firestore")
