"""SQLAlchemy-backed BattleStore.

Every call opens its own short-lived session from the factory, so the
turn timer thread and request handlers never share a Session object.
"""

from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.core.battle.documents import (
    DEFAULT_TIME_LIMIT_SECONDS,
    CHARACTER_FIELDS,
    character_field_value,
    character_from_dict,
    encounter_from_dict,
    foe_from_dict,
    item_from_dict,
    item_to_dict,
    question_from_dict,
)
from src.core.battle.models import (
    BattlePersistenceError,
    Character,
    EncounterDefinition,
    Foe,
    ItemDefinition,
    PromptType,
    Question,
    TurnOutcome,
)
from src.core.battle.store import BattleStore
from src.core.logging import get_logger
from src.db.models import (
    CharacterModel,
    EncounterModel,
    FoeModel,
    ItemDefinitionModel,
    QuestionModel,
    QuestionTagModel,
    SubmissionModel,
)

logger = get_logger(__name__)

COUNTER_FIELDS = ("xp", "gold")


class SqlBattleStore(BattleStore):
    """Relational rendition of the document collections."""

    def __init__(
        self,
        session_factory: sessionmaker,
        default_time_limit: float = DEFAULT_TIME_LIMIT_SECONDS,
    ) -> None:
        self._session_factory = session_factory
        self._default_time_limit = default_time_limit

    @contextmanager
    def _session(self, write: bool = False) -> Iterator[Session]:
        """Session scope. Any SQLAlchemy error becomes BattlePersistenceError."""
        db = self._session_factory()
        try:
            yield db
            if write:
                db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Store %s failed: %s", "write" if write else "read", e)
            raise BattlePersistenceError(str(e)) from e
        finally:
            db.close()

    # === characters ===

    def get_character(self, owner_id: str) -> Optional[Character]:
        with self._session() as db:
            row = db.get(CharacterModel, owner_id)
            if row is None:
                return None
            return character_from_dict(self._character_to_dict(row))

    def create_character(self, character: Character) -> None:
        with self._session(write=True) as db:
            row = db.get(CharacterModel, character.owner_id)
            if row is None:
                row = CharacterModel(owner_id=character.owner_id)
                db.add(row)
            self._apply_fields(row, character, CHARACTER_FIELDS)

    def save_character(self, character: Character, fields: Iterable[str]) -> None:
        fields = tuple(fields)
        with self._session(write=True) as db:
            row = db.get(CharacterModel, character.owner_id)
            if row is None:
                # 문서 병합 의미: 없으면 새로 만든다
                row = CharacterModel(owner_id=character.owner_id, name=character.name)
                db.add(row)
            self._apply_fields(row, character, fields)
        logger.debug("Saved character %s fields=%s", character.owner_id, fields)

    def increment_character(self, owner_id: str, field: str, delta: int) -> int:
        if field not in COUNTER_FIELDS:
            raise ValueError(f"Field is not a counter: {field}")
        column = getattr(CharacterModel, field)
        with self._session(write=True) as db:
            result = db.execute(
                update(CharacterModel)
                .where(CharacterModel.owner_id == owner_id)
                .values({field: column + delta})
            )
            if result.rowcount == 0:
                raise BattlePersistenceError(f"Character not found: {owner_id}")
            value = db.execute(
                select(column).where(CharacterModel.owner_id == owner_id)
            ).scalar_one()
        return int(value)

    # === items ===

    def get_item_definition(self, item_id: str) -> Optional[ItemDefinition]:
        with self._session() as db:
            row = db.get(ItemDefinitionModel, item_id)
            return self._item_to_core(row) if row is not None else None

    def list_item_definitions(self) -> list[ItemDefinition]:
        with self._session() as db:
            rows = db.scalars(select(ItemDefinitionModel)).all()
            return [self._item_to_core(r) for r in rows]

    def put_item_definition(self, item: ItemDefinition) -> None:
        doc = item_to_dict(item)
        with self._session(write=True) as db:
            db.merge(ItemDefinitionModel(**doc))

    # === foes ===

    def get_foe(self, foe_id: str) -> Optional[Foe]:
        with self._session() as db:
            row = db.get(FoeModel, foe_id)
            if row is None:
                return None
            return foe_from_dict(
                row.foe_id,
                {
                    "name": row.name,
                    "max_hp": row.max_hp,
                    "attack_damage": row.attack_damage,
                    "defense": row.defense,
                    "image_url": row.image_url,
                },
            )

    def put_foe(self, foe: Foe) -> None:
        with self._session(write=True) as db:
            db.merge(
                FoeModel(
                    foe_id=foe.foe_id,
                    name=foe.name,
                    max_hp=foe.max_hp,
                    attack_damage=foe.attack_damage,
                    defense=foe.defense,
                    image_url=foe.image_url,
                )
            )

    # === encounters ===

    def get_encounter(self, encounter_id: str) -> Optional[EncounterDefinition]:
        with self._session() as db:
            row = db.get(EncounterModel, encounter_id)
            return self._encounter_to_core(row) if row is not None else None

    def list_encounters(self) -> list[EncounterDefinition]:
        with self._session() as db:
            rows = db.scalars(
                select(EncounterModel).order_by(EncounterModel.encounter_id)
            ).all()
            return [self._encounter_to_core(r) for r in rows]

    def put_encounter(self, encounter: EncounterDefinition) -> None:
        with self._session(write=True) as db:
            db.merge(
                EncounterModel(
                    encounter_id=encounter.encounter_id,
                    title=encounter.title,
                    description=encounter.description,
                    foe_ids=list(encounter.foe_ids),
                    question_tags=list(encounter.question_tags),
                    win_reward_xp=encounter.win_reward_xp,
                    win_reward_gold=encounter.win_reward_gold,
                    win_item_ids=list(encounter.win_item_ids),
                    time_multiplier=encounter.time_multiplier,
                    shuffle_questions=encounter.shuffle_questions,
                    visual=dict(encounter.visual),
                )
            )

    # === questions ===

    def get_question(self, question_id: str) -> Optional[Question]:
        with self._session() as db:
            row = db.get(QuestionModel, question_id)
            return self._question_to_core(row) if row is not None else None

    def put_question(self, question: Question) -> None:
        prompts: dict[str, Optional[str]] = {
            "prompt_text": None,
            "prompt_latex": None,
            "prompt_image_url": None,
        }
        prompts[_PROMPT_COLUMNS[question.prompt_type]] = question.prompt
        with self._session(write=True) as db:
            row = db.get(QuestionModel, question.question_id)
            if row is None:
                row = QuestionModel(question_id=question.question_id)
                db.add(row)
            row.title = question.title
            row.prompt_type = question.prompt_type.value
            for column, value in prompts.items():
                setattr(row, column, value)
            row.choices = list(question.choices)
            row.correct_index = question.correct_index
            row.difficulty = question.difficulty
            row.sort_order = question.order
            row.time_limit = question.time_limit
            # 남는 태그 행은 그대로 유지 (같은 PK를 지웠다 다시 넣지 않는다)
            wanted = list(dict.fromkeys(question.tags))
            current = {t.tag: t for t in row.tags}
            row.tags = [current.get(t) or QuestionTagModel(tag=t) for t in wanted]

    def query_questions(self, tags: Iterable[str]) -> list[Question]:
        tag_list = list(dict.fromkeys(tags))
        if not tag_list:
            return []
        with self._session() as db:
            ids = (
                select(QuestionTagModel.question_id)
                .where(QuestionTagModel.tag.in_(tag_list))
                .distinct()
            )
            rows = db.scalars(
                select(QuestionModel)
                .where(QuestionModel.question_id.in_(ids))
                .order_by(QuestionModel.question_id)
            ).all()
            return [self._question_to_core(r) for r in rows]

    # === history ===

    def record_submission(
        self,
        owner_id: str,
        encounter_id: str,
        question_id: str,
        selected_index: Optional[int],
        outcome: TurnOutcome,
    ) -> None:
        with self._session(write=True) as db:
            db.add(
                SubmissionModel(
                    owner_id=owner_id,
                    encounter_id=encounter_id,
                    question_id=question_id,
                    selected_index=selected_index,
                    outcome=outcome.value,
                    is_correct=outcome == TurnOutcome.CORRECT,
                )
            )

    def list_submissions(self, owner_id: str) -> list[dict[str, Any]]:
        with self._session() as db:
            rows = db.scalars(
                select(SubmissionModel)
                .where(SubmissionModel.owner_id == owner_id)
                .order_by(SubmissionModel.id)
            ).all()
            return [
                {
                    "encounter_id": r.encounter_id,
                    "question_id": r.question_id,
                    "selected_index": r.selected_index,
                    "outcome": r.outcome,
                    "is_correct": r.is_correct,
                    "created_at": r.created_at,
                }
                for r in rows
            ]

    # === ORM ↔ Core 변환 ===

    @staticmethod
    def _apply_fields(
        row: CharacterModel, character: Character, fields: Iterable[str]
    ) -> None:
        for name in fields:
            setattr(row, name, character_field_value(character, name))

    @staticmethod
    def _character_to_dict(row: CharacterModel) -> dict[str, Any]:
        return {
            "owner_id": row.owner_id,
            "name": row.name,
            "class_name": row.class_name,
            "level": row.level,
            "xp": row.xp,
            "gold": row.gold,
            "max_hp": row.max_hp,
            "hp": row.hp,
            "base_damage": row.base_damage,
            "base_defense": row.base_defense,
            "inventory": list(row.inventory or []),
            "equipment": dict(row.equipment or {}),
        }

    @staticmethod
    def _item_to_core(row: ItemDefinitionModel) -> ItemDefinition:
        return item_from_dict(
            {
                "item_id": row.item_id,
                "name": row.name,
                "category": row.category,
                "price": row.price,
                "slot": row.slot,
                "stats": row.stats or {},
                "max_durability": row.max_durability,
                "description": row.description,
                "image_url": row.image_url,
            }
        )

    @staticmethod
    def _encounter_to_core(row: EncounterModel) -> EncounterDefinition:
        return encounter_from_dict(
            row.encounter_id,
            {
                "title": row.title,
                "description": row.description,
                "foe_ids": row.foe_ids,
                "question_tags": row.question_tags,
                "win_reward_xp": row.win_reward_xp,
                "win_reward_gold": row.win_reward_gold,
                "win_item_ids": row.win_item_ids or [],
                "time_multiplier": row.time_multiplier,
                "shuffle_questions": row.shuffle_questions,
                "visual": row.visual or {},
            },
        )

    def _question_to_core(self, row: QuestionModel) -> Question:
        return question_from_dict(
            row.question_id,
            {
                "title": row.title,
                "prompt_type": row.prompt_type,
                "prompt_text": row.prompt_text,
                "prompt_latex": row.prompt_latex,
                "prompt_image_url": row.prompt_image_url,
                "choices": row.choices,
                "correct_index": row.correct_index,
                "difficulty": row.difficulty,
                "order": row.sort_order,
                "time_limit": row.time_limit,
                "tags": [t.tag for t in row.tags],
            },
            default_time_limit=self._default_time_limit,
        )


_PROMPT_COLUMNS = {
    PromptType.TEXT: "prompt_text",
    PromptType.LATEX: "prompt_latex",
    PromptType.IMAGE: "prompt_image_url",
}
