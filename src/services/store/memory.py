"""In-memory BattleStore for testing and local play."""

import copy
from datetime import datetime
from typing import Any, Iterable, Optional

from src.core.battle.documents import (
    character_field_value,
    character_from_dict,
    character_to_dict,
)
from src.core.battle.models import (
    BattlePersistenceError,
    Character,
    EncounterDefinition,
    Foe,
    ItemDefinition,
    Question,
    TurnOutcome,
)
from src.core.battle.store import BattleStore

COUNTER_FIELDS = ("xp", "gold")


class MemoryBattleStore(BattleStore):
    """Dict-backed store.

    Characters are kept as plain documents and copied on every read/write,
    so callers never share mutable state with the store. Content documents
    (items, foes, questions, encounters) are immutable and stored as-is.

    Set ``fail_writes = True`` to make every write raise
    BattlePersistenceError (used to exercise save-failure handling).
    """

    def __init__(self) -> None:
        self._characters: dict[str, dict[str, Any]] = {}
        self._items: dict[str, ItemDefinition] = {}
        self._foes: dict[str, Foe] = {}
        self._questions: dict[str, Question] = {}
        self._encounters: dict[str, EncounterDefinition] = {}
        self.submissions: list[dict[str, Any]] = []
        self.fail_writes = False

    def _check_writable(self) -> None:
        if self.fail_writes:
            raise BattlePersistenceError("Store is not writable")

    # === characters ===

    def get_character(self, owner_id: str) -> Optional[Character]:
        doc = self._characters.get(owner_id)
        if doc is None:
            return None
        return character_from_dict(copy.deepcopy(doc))

    def create_character(self, character: Character) -> None:
        self._check_writable()
        self._characters[character.owner_id] = copy.deepcopy(
            character_to_dict(character)
        )

    def save_character(self, character: Character, fields: Iterable[str]) -> None:
        self._check_writable()
        doc = self._characters.setdefault(
            character.owner_id, {"owner_id": character.owner_id}
        )
        for name in fields:
            doc[name] = copy.deepcopy(character_field_value(character, name))

    def increment_character(self, owner_id: str, field: str, delta: int) -> int:
        self._check_writable()
        if field not in COUNTER_FIELDS:
            raise ValueError(f"Field is not a counter: {field}")
        doc = self._characters.get(owner_id)
        if doc is None:
            raise BattlePersistenceError(f"Character not found: {owner_id}")
        doc[field] = int(doc.get(field, 0)) + delta
        return doc[field]

    # === content ===

    def get_item_definition(self, item_id: str) -> Optional[ItemDefinition]:
        return self._items.get(item_id)

    def list_item_definitions(self) -> list[ItemDefinition]:
        return list(self._items.values())

    def put_item_definition(self, item: ItemDefinition) -> None:
        self._check_writable()
        self._items[item.item_id] = item

    def get_foe(self, foe_id: str) -> Optional[Foe]:
        return self._foes.get(foe_id)

    def put_foe(self, foe: Foe) -> None:
        self._check_writable()
        self._foes[foe.foe_id] = foe

    def get_encounter(self, encounter_id: str) -> Optional[EncounterDefinition]:
        return self._encounters.get(encounter_id)

    def list_encounters(self) -> list[EncounterDefinition]:
        return [self._encounters[k] for k in sorted(self._encounters)]

    def put_encounter(self, encounter: EncounterDefinition) -> None:
        self._check_writable()
        self._encounters[encounter.encounter_id] = encounter

    def get_question(self, question_id: str) -> Optional[Question]:
        return self._questions.get(question_id)

    def put_question(self, question: Question) -> None:
        self._check_writable()
        self._questions[question.question_id] = question

    def query_questions(self, tags: Iterable[str]) -> list[Question]:
        wanted = set(tags)
        return [q for q in self._questions.values() if wanted & set(q.tags)]

    # === history ===

    def record_submission(
        self,
        owner_id: str,
        encounter_id: str,
        question_id: str,
        selected_index: Optional[int],
        outcome: TurnOutcome,
    ) -> None:
        self._check_writable()
        self.submissions.append(
            {
                "owner_id": owner_id,
                "encounter_id": encounter_id,
                "question_id": question_id,
                "selected_index": selected_index,
                "outcome": outcome.value,
                "is_correct": outcome == TurnOutcome.CORRECT,
                "created_at": datetime.utcnow(),
            }
        )

    def list_submissions(self, owner_id: str) -> list[dict[str, Any]]:
        return [
            {k: v for k, v in s.items() if k != "owner_id"}
            for s in self.submissions
            if s["owner_id"] == owner_id
        ]
