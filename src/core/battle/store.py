"""Abstract persistence collaborator for the battle core.

Document-oriented: whole records are read by id and written back by
merging named fields. Implementations raise BattlePersistenceError when a
write fails; lookups return None for missing documents.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

from .models import (
    Character,
    EncounterDefinition,
    Foe,
    ItemDefinition,
    Question,
    TurnOutcome,
)


class BattleStore(ABC):
    """Persistence interface consumed by the encounter state machine.

    Writes are last-writer-wins; no optimistic concurrency token.
    """

    # === characters ===

    @abstractmethod
    def get_character(self, owner_id: str) -> Optional[Character]:
        """Point lookup of a character by owner id."""
        ...

    @abstractmethod
    def create_character(self, character: Character) -> None:
        """Insert a new character document (overwrites an existing one)."""
        ...

    @abstractmethod
    def save_character(self, character: Character, fields: Iterable[str]) -> None:
        """Merge the named fields of ``character`` into its stored document."""
        ...

    @abstractmethod
    def increment_character(self, owner_id: str, field: str, delta: int) -> int:
        """Atomically add ``delta`` to a numeric field. Returns the new value."""
        ...

    # === content ===

    @abstractmethod
    def get_item_definition(self, item_id: str) -> Optional[ItemDefinition]: ...

    @abstractmethod
    def list_item_definitions(self) -> list[ItemDefinition]: ...

    @abstractmethod
    def put_item_definition(self, item: ItemDefinition) -> None: ...

    @abstractmethod
    def get_foe(self, foe_id: str) -> Optional[Foe]: ...

    @abstractmethod
    def get_encounter(self, encounter_id: str) -> Optional[EncounterDefinition]: ...

    @abstractmethod
    def list_encounters(self) -> list[EncounterDefinition]: ...

    @abstractmethod
    def get_question(self, question_id: str) -> Optional[Question]: ...

    @abstractmethod
    def query_questions(self, tags: Iterable[str]) -> list[Question]:
        """Questions carrying any of ``tags`` (single tag = exact match)."""
        ...

    @abstractmethod
    def put_foe(self, foe: Foe) -> None: ...

    @abstractmethod
    def put_question(self, question: Question) -> None: ...

    @abstractmethod
    def put_encounter(self, encounter: EncounterDefinition) -> None: ...

    # === history ===

    @abstractmethod
    def record_submission(
        self,
        owner_id: str,
        encounter_id: str,
        question_id: str,
        selected_index: Optional[int],
        outcome: TurnOutcome,
    ) -> None:
        """Append one resolved turn to the submission history."""
        ...

    @abstractmethod
    def list_submissions(self, owner_id: str) -> list[dict[str, Any]]:
        """Submission history of one owner, oldest first."""
        ...
