"""API request/response schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


# === Request Schemas ===


class RegisterRequest(BaseModel):
    """캐릭터 등록 요청"""

    owner_id: str = Field(..., min_length=1, max_length=128, description="소유자 ID")
    name: str = Field(..., min_length=1, max_length=50, description="캐릭터 이름")


class AnswerRequest(BaseModel):
    """답안 제출"""

    choice_index: int = Field(..., ge=0, description="선택지 인덱스 (0부터)")


class EquipRequest(BaseModel):
    instance_id: str = Field(..., min_length=1)


class UnequipRequest(BaseModel):
    slot: str = Field(..., description="mainHand | offHand | armor | head")


class UsePotionRequest(BaseModel):
    instance_id: str = Field(..., min_length=1)


# === Response Schemas ===


class CharacterInfo(BaseModel):
    """캐릭터 정보 (장비 반영 유효 스탯 포함)"""

    owner_id: str
    name: str
    class_name: str
    level: int
    xp: int
    gold: int
    hp: int
    max_hp: int
    base_damage: int
    base_defense: int
    effective_max_hp: int
    effective_damage: int
    effective_defense: int
    timer_multiplier: float
    equipment: dict[str, Optional[str]]


class EncounterInfo(BaseModel):
    """인카운터 목록 항목"""

    encounter_id: str
    title: str
    description: str = ""
    foe_ids: list[str]
    question_tags: list[str]
    win_reward_xp: int
    win_reward_gold: int
    time_multiplier: float


class InventoryEntry(BaseModel):
    instance_id: str
    item_id: str
    name: str
    category: Optional[str] = None
    slot: Optional[str] = None
    obtained_at: int
    durability: Optional[int] = None
    max_durability: Optional[int] = None
    is_broken: bool = False
    durability_ratio: float = 1.0
    equipped: bool = False


class SubmissionEntry(BaseModel):
    """턴 기록 1건"""

    encounter_id: str
    question_id: str
    selected_index: Optional[int] = None
    outcome: str
    is_correct: bool
    created_at: datetime


class FoeView(BaseModel):
    foe_id: str
    name: str
    hp: int
    max_hp: int
    image_url: Optional[str] = None


class QuestionView(BaseModel):
    """표시용 문제 (정답 인덱스 없음)"""

    question_id: str
    title: str = ""
    prompt_type: str
    prompt: str
    choices: list[str]


class RewardView(BaseModel):
    xp_gained: int
    gold_gained: int
    levels_gained: int
    new_level: int
    hp_gained: int
    attack_gained: int
    defense_gained: int
    dropped_item_ids: list[str] = []


class BattleStateResponse(BaseModel):
    """상태 머신 스냅샷"""

    owner_id: str
    phase: str
    status_message: str = ""
    save_failed: bool = False
    encounter_id: Optional[str] = None
    encounter_title: Optional[str] = None
    turn_state: Optional[str] = None
    turn_index: Optional[int] = None
    total_turns: Optional[int] = None
    foe: Optional[FoeView] = None
    player_hp: Optional[int] = None
    player_max_hp: Optional[int] = None
    time_left: Optional[float] = None
    max_time: Optional[float] = None
    last_outcome: Optional[str] = None
    last_damage_dealt: Optional[int] = None
    last_damage_taken: Optional[int] = None
    loss_reason: Optional[str] = None
    question: Optional[QuestionView] = None
    reward: Optional[RewardView] = None


class LoadoutResponse(BaseModel):
    """장비 변경 결과"""

    success: bool = True
    message: str = ""
    character: CharacterInfo
    details: dict[str, Any] = {}


class ErrorResponse(BaseModel):
    """에러 응답"""

    success: bool = False
    error: str
    detail: Optional[str] = None
