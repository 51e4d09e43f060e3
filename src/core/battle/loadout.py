"""장비 관리: 장착/해제/포션 사용 (전투 밖)"""

from __future__ import annotations

import logging
from typing import Optional

from .models import (
    Character,
    EquipmentSlot,
    InventoryItem,
    ItemCategory,
    LoadoutError,
)
from .stats import ItemLookup, effective_max_hp, round_up

logger = logging.getLogger(__name__)


def equip(
    character: Character, instance_id: str, get_item: ItemLookup
) -> tuple[EquipmentSlot, Optional[str]]:
    """인벤토리 개체를 정의된 슬롯에 장착.
    기존 장착품은 인벤토리에 그대로 남는다. 파손품도 장착 가능 (스탯 기여 0).

    Returns: (슬롯, 밀려난 instance_id 또는 None)
    """
    instance = character.find_instance(instance_id)
    if instance is None:
        raise LoadoutError(f"Item not in inventory: {instance_id}")
    definition = get_item(instance.item_id)
    if definition is None or definition.slot is None:
        raise LoadoutError(f"Item cannot be equipped: {instance.item_id}")

    slot = definition.slot
    previous = character.equipment.get(slot)
    if previous == instance_id:
        return slot, None

    # 다른 슬롯에 걸려 있던 같은 개체는 정리
    for other, ref in character.equipment.items():
        if ref == instance_id:
            character.equipment[other] = None
    character.equipment[slot] = instance_id

    logger.debug(
        "Equipped %s in %s (owner=%s, replaced=%s)",
        instance_id,
        slot.value,
        character.owner_id,
        previous,
    )
    return slot, previous


def unequip(character: Character, slot: EquipmentSlot) -> Optional[str]:
    """슬롯 비우기. 반환: 해제된 instance_id (비어 있었으면 None)"""
    previous = character.equipment.get(slot)
    character.equipment[slot] = None
    return previous


def heal_amount(instance: InventoryItem, get_item: ItemLookup) -> int:
    definition = get_item(instance.item_id)
    if (
        definition is None
        or definition.category != ItemCategory.POTION
        or definition.stats.heal is None
    ):
        raise LoadoutError(f"Item is not a usable potion: {instance.item_id}")
    heal = definition.stats.heal
    return max(0, round_up(heal.flat * heal.mult))


def use_potion(character: Character, instance_id: str, get_item: ItemLookup) -> int:
    """포션 소모. 현재 HP를 회복량만큼 올리되 유효 최대 HP를 넘지 않는다.
    개체는 인벤토리에서 제거. 반환: 실제 회복량
    """
    instance = character.find_instance(instance_id)
    if instance is None:
        raise LoadoutError(f"Item not in inventory: {instance_id}")
    amount = heal_amount(instance, get_item)

    cap = effective_max_hp(character, get_item)
    before = character.hp
    character.hp = max(before, min(cap, before + amount))
    character.remove_instance(instance_id)
    return character.hp - before
