"""보상 & 성장: 승리 보상(XP/레벨업/골드/드롭), 패배 페널티"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .models import Character, EncounterDefinition, InventoryItem, RewardSummary
from .stats import round_down, round_up

logger = logging.getLogger(__name__)

LEVEL_CAP = 100
MILESTONE_INTERVAL = 10
XP_CURVE_BASE = 100
XP_CURVE_GROWTH = 1.1
HP_PER_BOOST = 5
LOSS_GOLD_PENALTY_RATE = 0.2

InstanceFactory = Callable[[str], InventoryItem]


def xp_to_next_level(level: int) -> int:
    """level → level+1 에 필요한 XP. floor(100 × 1.1^(level−1))"""
    return round_down(XP_CURVE_BASE * XP_CURVE_GROWTH ** (level - 1))


def is_milestone(level: int) -> bool:
    return level % MILESTONE_INTERVAL == 0


def level_tier(level: int) -> int:
    return level // MILESTONE_INTERVAL + 1


def apply_level_ups(
    character: Character, level_cap: int = LEVEL_CAP
) -> tuple[int, int, int, int]:
    """누적 XP로 가능한 만큼 연속 레벨업.

    레벨마다:
    - 마일스톤(10의 배수): statBoost = tier, 방어 +tier
    - 그 외: statBoost = 1, 방어 +0
    - 최대 HP / 현재 HP +5×statBoost (현재 HP는 이전 최대치로 제한하지 않음)
    - 기본 공격 +statBoost

    Returns: (오른 레벨 수, HP 증가, 공격 증가, 방어 증가)
    """
    levels = hp_gained = attack_gained = defense_gained = 0
    while character.level < level_cap:
        threshold = xp_to_next_level(character.level)
        if character.xp < threshold:
            break
        character.xp -= threshold
        character.level += 1
        levels += 1

        tier = level_tier(character.level)
        milestone = is_milestone(character.level)
        stat_boost = tier if milestone else 1

        hp_boost = HP_PER_BOOST * stat_boost
        character.max_hp += hp_boost
        character.hp += hp_boost
        character.base_damage += stat_boost
        defense_boost = tier if milestone else 0
        character.base_defense += defense_boost

        hp_gained += hp_boost
        attack_gained += stat_boost
        defense_gained += defense_boost

    if levels:
        logger.info(
            "Character %s leveled up x%d -> Lv.%d",
            character.owner_id,
            levels,
            character.level,
        )
    return levels, hp_gained, attack_gained, defense_gained


def apply_victory_rewards(
    character: Character,
    encounter: EncounterDefinition,
    new_instance: Optional[InstanceFactory] = None,
    level_cap: int = LEVEL_CAP,
) -> RewardSummary:
    """승리 보상을 캐릭터에 적용하고 요약 반환. 저장은 호출자 책임.

    new_instance: item_id → 새 InventoryItem (ItemCatalog.new_instance).
    알 수 없는 드롭 아이템은 경고 후 건너뛴다.
    """
    character.xp += encounter.win_reward_xp
    levels, hp, attack, defense = apply_level_ups(character, level_cap)
    character.gold += encounter.win_reward_gold

    dropped: list[InventoryItem] = []
    if new_instance is not None:
        for item_id in encounter.win_item_ids:
            try:
                instance = new_instance(item_id)
            except ValueError:
                logger.warning(
                    "Drop skipped: unknown item %s (encounter=%s)",
                    item_id,
                    encounter.encounter_id,
                )
                continue
            character.inventory.append(instance)
            dropped.append(instance)

    return RewardSummary(
        xp_gained=encounter.win_reward_xp,
        gold_gained=encounter.win_reward_gold,
        levels_gained=levels,
        new_level=character.level,
        hp_gained=hp,
        attack_gained=attack,
        defense_gained=defense,
        dropped_items=dropped,
    )


def loss_gold_penalty(gold: int, rate: float = LOSS_GOLD_PENALTY_RATE) -> int:
    """패배 골드 페널티 = ceil(gold × rate). 보유 골드 이하."""
    if gold <= 0:
        return 0
    return min(gold, round_up(gold * rate))


def apply_defeat(
    character: Character, full_hp: int, rate: float = LOSS_GOLD_PENALTY_RATE
) -> int:
    """패배 처리: 골드 차감 + HP 완전 회복(부활). 반환: 차감된 골드"""
    penalty = loss_gold_penalty(character.gold, rate)
    character.gold -= penalty
    character.hp = full_hp
    return penalty
