"""스탯 계산: 기본 스탯 + 장착 중인 비파손 아이템

모든 함수는 현재 스냅샷에 대한 순수 함수. 아이템 정의 조회는
get_item(item_id) 콜백으로 주입받는다 (ItemCatalog.get 등).
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Iterator, Optional

from .models import (
    Character,
    EquipmentSlot,
    Foe,
    InventoryItem,
    ItemDefinition,
    StatModifier,
)

logger = logging.getLogger(__name__)

ItemLookup = Callable[[str], Optional[ItemDefinition]]

# float 누적 오차로 4.000000001 → 5가 되지 않도록 자릿수 정리 후 올림/내림
_PRECISION = 9


def round_up(value: float) -> int:
    return math.ceil(round(value, _PRECISION))


def round_down(value: float) -> int:
    return math.floor(round(value, _PRECISION))


def iter_active_equipment(
    character: Character, get_item: ItemLookup
) -> Iterator[tuple[EquipmentSlot, InventoryItem, ItemDefinition]]:
    """스탯에 기여하는 장착 아이템.

    제외 대상:
    - 빈 슬롯
    - 인벤토리에 없는 instance 참조 (dangling): 턴을 실패시키지 않고 무시
    - 내구도 0 (파손)
    - 정의를 찾을 수 없는 아이템
    같은 instance가 두 슬롯에 걸려 있으면 한 번만 센다.
    """
    seen: set[str] = set()
    for slot in EquipmentSlot:
        ref = character.equipment.get(slot)
        if not ref or ref in seen:
            continue
        instance = character.find_instance(ref)
        if instance is None:
            logger.debug(
                "Dangling equipment ref ignored: owner=%s slot=%s ref=%s",
                character.owner_id,
                slot.value,
                ref,
            )
            continue
        if instance.is_broken:
            continue
        definition = get_item(instance.item_id)
        if definition is None:
            logger.debug("Unknown item definition ignored: %s", instance.item_id)
            continue
        seen.add(ref)
        yield slot, instance, definition


def _accumulate(
    modifiers: list[Optional[StatModifier]],
) -> tuple[float, float]:
    """flat은 합, mult는 곱. (Σflat, Πmult)"""
    total_flat = 0.0
    total_mult = 1.0
    for mod in modifiers:
        if mod is None:
            continue
        total_flat += mod.flat
        total_mult *= mod.mult
    return total_flat, total_mult


def timer_multiplier(character: Character, get_item: ItemLookup) -> float:
    """주무기(main hand)의 타이머 배율. 없음/파손/배율 미정의 → 1.0"""
    instance = character.equipped_instance(EquipmentSlot.MAIN_HAND)
    if instance is None or instance.is_broken:
        return 1.0
    definition = get_item(instance.item_id)
    if definition is None or definition.stats.timer_multiplier is None:
        return 1.0
    return definition.stats.timer_multiplier


def player_damage(character: Character, get_item: ItemLookup) -> int:
    """ceil((base + Σflat) × Πmult), 최소 0"""
    flat, mult = _accumulate(
        [d.stats.damage for _, _, d in iter_active_equipment(character, get_item)]
    )
    return max(0, round_up((character.base_damage + flat) * mult))


def effective_defense(character: Character, get_item: ItemLookup) -> int:
    """floor((baseDefense + Σflat) × Πmult), 최소 0"""
    flat, mult = _accumulate(
        [d.stats.defense for _, _, d in iter_active_equipment(character, get_item)]
    )
    return max(0, round_down((character.base_defense + flat) * mult))


def incoming_damage(
    character: Character, raw_foe_damage: int, get_item: ItemLookup
) -> int:
    """받는 피해 = max(0, raw − effective_defense).
    effective_defense가 이미 정수(내림)이므로 추가 반올림 없음.
    """
    return max(0, raw_foe_damage - effective_defense(character, get_item))


def damage_against(character: Character, foe: Foe, get_item: ItemLookup) -> int:
    """정답 1회가 적에게 주는 피해 = max(0, playerDamage − foe.defense)"""
    return max(0, player_damage(character, get_item) - foe.defense)


def effective_max_hp(character: Character, get_item: ItemLookup) -> int:
    """기본 최대 HP + 장착 아이템 max_hp flat 합. mult는 사용하지 않는다."""
    bonus = sum(
        d.stats.max_hp.flat
        for _, _, d in iter_active_equipment(character, get_item)
        if d.stats.max_hp is not None
    )
    return max(1, round_down(character.max_hp + bonus))


def resolve_timer_seconds(
    base_seconds: float, encounter_multiplier: float, item_multiplier: float
) -> float:
    """문제 제한 시간 = base × 인카운터 배율 × 아이템 배율 (반올림 없음)"""
    return base_seconds * encounter_multiplier * item_multiplier
