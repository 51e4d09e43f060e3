"""내구도 시스템: 장착 슬롯 단위 마모"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .models import Character, EquipmentSlot, InventoryItem

logger = logging.getLogger(__name__)

# 마모 정책: 정답 → 주무기, 오답/시간초과/스킵 → 방어구
ATTACK_WEAR_SLOT = EquipmentSlot.MAIN_HAND
DEFEND_WEAR_SLOT = EquipmentSlot.ARMOR
WEAR_PER_ACTION = 1


@dataclass(frozen=True)
class DegradeResult:
    slot: EquipmentSlot
    changed: bool  # 인벤토리가 실제로 바뀌었는지 (저장 필요 여부)
    just_broke: bool  # 이번 호출로 0이 되었는지. 이미 파손된 아이템은 False
    instance_id: Optional[str] = None
    item_id: Optional[str] = None
    durability: Optional[int] = None


def degrade(character: Character, slot: EquipmentSlot, amount: int) -> DegradeResult:
    """슬롯 아이템 내구도 감소.

    빈 슬롯 / dangling 참조 / 내구도 미추적 아이템 → no-op, just_broke=False.
    new = max(0, old − amount). old > 0 이고 new == 0 일 때만 just_broke.
    파손 아이템은 자동 해제/삭제하지 않는다.
    """
    if amount < 0:
        raise ValueError(f"wear amount must be >= 0: {amount}")

    instance = character.equipped_instance(slot)
    if instance is None or not instance.tracks_durability:
        return DegradeResult(slot=slot, changed=False, just_broke=False)

    old = instance.durability
    new = max(0, old - amount)
    instance.durability = new
    just_broke = old > 0 and new == 0

    if just_broke:
        logger.info(
            "Item %s (def=%s) broke in slot %s (owner=%s)",
            instance.instance_id,
            instance.item_id,
            slot.value,
            character.owner_id,
        )

    return DegradeResult(
        slot=slot,
        changed=new != old,
        just_broke=just_broke,
        instance_id=instance.instance_id,
        item_id=instance.item_id,
        durability=new,
    )


def get_durability_ratio(instance: InventoryItem) -> float:
    """현재 내구도 비율 (0.0~1.0). 내구도 미추적 아이템은 1.0"""
    if not instance.tracks_durability or not instance.max_durability:
        return 1.0
    return instance.durability / instance.max_durability
