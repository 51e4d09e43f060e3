"""전투 도메인 모델 (DB 무관)

캐릭터/아이템/적/문제/인카운터 정의와 전투 중에만 존재하는
ActiveEncounterState. 선택 필드의 기본값은 로드 시점(catalog / store)에서
한 번만 채운다. 읽는 쪽에서 다시 기본값을 넣지 않는다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


# ── 예외 ─────────────────────────────────────────────────────


class BattleError(Exception):
    """전투 코어 예외 기본형"""


class EncounterConfigError(BattleError):
    """인카운터 구성 오류 (적/문제 풀 없음). 재시도 불가."""


class EncounterNotFoundError(EncounterConfigError):
    """존재하지 않는 인카운터 id"""


class InvalidTransitionError(BattleError):
    """현재 phase에서 허용되지 않는 입력"""


class LoadoutError(BattleError):
    """장착/해제/소모 불가"""


class BattlePersistenceError(BattleError):
    """저장소 쓰기 실패. 메모리 상태는 유지된다."""


# ── 열거형 ───────────────────────────────────────────────────


class ItemCategory(str, Enum):
    WEAPON = "weapon"
    ARMOR = "armor"
    POTION = "potion"
    MISC = "misc"


class EquipmentSlot(str, Enum):
    MAIN_HAND = "mainHand"
    OFF_HAND = "offHand"
    ARMOR = "armor"
    HEAD = "head"


class PromptType(str, Enum):
    TEXT = "text"
    LATEX = "latex"
    IMAGE = "image"


class EncounterPhase(str, Enum):
    LOBBY = "lobby"
    INTRO = "intro"
    BATTLE = "battle"
    WON = "won"
    LOST = "lost"
    ESCAPED = "escaped"

    @property
    def is_terminal(self) -> bool:
        return self in (EncounterPhase.WON, EncounterPhase.LOST, EncounterPhase.ESCAPED)


class TurnState(str, Enum):
    """battle phase 내부 하위 상태"""

    AWAITING_ANSWER = "awaiting_answer"
    PAUSED = "paused"  # 오답/시간초과 후 확인 대기


class TurnOutcome(str, Enum):
    CORRECT = "correct"
    WRONG = "wrong"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"


class LossReason(str, Enum):
    HP_DEPLETED = "hp_depleted"
    OUT_OF_TURNS = "out_of_turns"


# ── 아이템 ───────────────────────────────────────────────────


@dataclass(frozen=True)
class StatModifier:
    """{flat, mult} 쌍. flat은 합산, mult는 곱셈 누적."""

    flat: float = 0.0
    mult: float = 1.0


@dataclass(frozen=True)
class ItemStats:
    damage: Optional[StatModifier] = None
    defense: Optional[StatModifier] = None
    max_hp: Optional[StatModifier] = None
    heal: Optional[StatModifier] = None
    timer_multiplier: Optional[float] = None


@dataclass(frozen=True)
class ItemDefinition:
    """아이템 원형: 불변, 모든 소유자가 공유."""

    item_id: str  # "sword-wood"
    name: str
    category: ItemCategory
    price: int = 0
    slot: Optional[EquipmentSlot] = None  # 정규화 완료된 값
    stats: ItemStats = field(default_factory=ItemStats)
    max_durability: Optional[int] = None  # None = 내구도 없음
    description: str = ""
    image_url: Optional[str] = None


@dataclass
class InventoryItem:
    """캐릭터가 소유한 아이템 개체"""

    item_id: str  # ItemDefinition.item_id 참조
    instance_id: str  # UUID
    obtained_at: int  # epoch ms
    durability: Optional[int] = None
    max_durability: Optional[int] = None

    @property
    def tracks_durability(self) -> bool:
        return self.durability is not None and self.max_durability is not None

    @property
    def is_broken(self) -> bool:
        return self.tracks_durability and self.durability == 0


def empty_equipment() -> dict[EquipmentSlot, Optional[str]]:
    return {slot: None for slot in EquipmentSlot}


# ── 캐릭터 ───────────────────────────────────────────────────


@dataclass
class Character:
    """플레이어의 영속 전투 기록"""

    owner_id: str
    name: str
    level: int = 1
    xp: int = 0
    gold: int = 0
    max_hp: int = 15
    base_damage: int = 1
    base_defense: int = 0
    hp: int = 15  # max_hp와 별개. 세션 간 부상 유지
    class_name: str = "Apprentice"
    inventory: list[InventoryItem] = field(default_factory=list)
    equipment: dict[EquipmentSlot, Optional[str]] = field(
        default_factory=empty_equipment
    )

    def find_instance(self, instance_id: Optional[str]) -> Optional[InventoryItem]:
        if instance_id is None:
            return None
        for item in self.inventory:
            if item.instance_id == instance_id:
                return item
        return None

    def equipped_instance(self, slot: EquipmentSlot) -> Optional[InventoryItem]:
        """슬롯의 아이템. 인벤토리에 없는 참조(dangling)는 None."""
        return self.find_instance(self.equipment.get(slot))

    def remove_instance(self, instance_id: str) -> Optional[InventoryItem]:
        """인벤토리에서 제거. 해당 개체를 참조하던 슬롯도 비운다."""
        item = self.find_instance(instance_id)
        if item is None:
            return None
        self.inventory.remove(item)
        for slot, ref in self.equipment.items():
            if ref == instance_id:
                self.equipment[slot] = None
        return item


# ── 적 / 문제 / 인카운터 ─────────────────────────────────────


@dataclass(frozen=True)
class Foe:
    foe_id: str
    name: str
    max_hp: int
    attack_damage: int
    defense: int = 0
    image_url: Optional[str] = None


@dataclass(frozen=True)
class Question:
    question_id: str
    prompt_type: PromptType
    prompt: str  # prompt_type에 해당하는 본문 (텍스트/LaTeX/이미지 URL)
    choices: tuple[str, ...]
    correct_index: int
    time_limit: float  # 초
    difficulty: int = 1
    tags: tuple[str, ...] = ()
    order: Optional[int] = None
    title: str = ""

    def is_correct(self, choice_index: int) -> bool:
        return choice_index == self.correct_index


@dataclass(frozen=True)
class EncounterDefinition:
    encounter_id: str
    title: str
    foe_ids: tuple[str, ...]  # 첫 번째가 주 적
    question_tags: tuple[str, ...]
    win_reward_xp: int = 0
    win_reward_gold: int = 0
    win_item_ids: tuple[str, ...] = ()
    time_multiplier: float = 1.0
    shuffle_questions: bool = True
    description: str = ""
    visual: dict[str, Any] = field(default_factory=dict)

    @property
    def primary_foe_id(self) -> str:
        return self.foe_ids[0]


# ── 보상 ─────────────────────────────────────────────────────


@dataclass
class RewardSummary:
    """승리 보상 요약 (레벨업 표시용)"""

    xp_gained: int = 0
    gold_gained: int = 0
    levels_gained: int = 0
    new_level: int = 1
    hp_gained: int = 0
    attack_gained: int = 0
    defense_gained: int = 0
    dropped_items: list[InventoryItem] = field(default_factory=list)


# ── 전투 중 상태 ─────────────────────────────────────────────


@dataclass
class ActiveEncounterState:
    """전투 1회 동안만 존재하는 세션 상태"""

    encounter: EncounterDefinition
    foe: Foe
    questions: list[Question]
    foe_hp: int
    player_hp: int
    player_max_hp: int
    phase: EncounterPhase = EncounterPhase.INTRO
    turn_state: TurnState = TurnState.AWAITING_ANSWER
    turn_index: int = 0
    last_outcome: Optional[TurnOutcome] = None
    last_damage_dealt: int = 0
    last_damage_taken: int = 0
    loss_reason: Optional[LossReason] = None
    reward: Optional[RewardSummary] = None

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.turn_index < len(self.questions):
            return self.questions[self.turn_index]
        return None

    @property
    def total_turns(self) -> int:
        return len(self.questions)
