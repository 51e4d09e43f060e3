"""문서(dict) ↔ 도메인 모델 변환

저장소 문서는 느슨한 dict다. 여기서 한 번 정규화한 뒤에는
도메인 코드가 선택 필드 기본값을 다시 채우지 않는다.
"""

from __future__ import annotations

from typing import Any, Optional

from .models import (
    Character,
    EncounterDefinition,
    EquipmentSlot,
    Foe,
    InventoryItem,
    ItemCategory,
    ItemDefinition,
    ItemStats,
    PromptType,
    Question,
    StatModifier,
    empty_equipment,
)

DEFAULT_TIME_LIMIT_SECONDS = 20.0

# slot 필드가 없을 때 category로 추론
CATEGORY_DEFAULT_SLOT: dict[ItemCategory, Optional[EquipmentSlot]] = {
    ItemCategory.WEAPON: EquipmentSlot.MAIN_HAND,
    ItemCategory.ARMOR: EquipmentSlot.ARMOR,
    ItemCategory.POTION: None,
    ItemCategory.MISC: None,
}


# ── 아이템 ───────────────────────────────────────────────────


def _modifier_from_raw(raw: Any) -> Optional[StatModifier]:
    """{flat, mult} 또는 구버전 스칼라(2 → flat 2)를 StatModifier로."""
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        return StatModifier(flat=float(raw), mult=1.0)
    flat = raw.get("flat")
    mult = raw.get("mult")
    return StatModifier(
        flat=float(flat) if flat is not None else 0.0,
        mult=float(mult) if mult is not None else 1.0,
    )


def _modifier_to_raw(mod: Optional[StatModifier]) -> Optional[dict]:
    if mod is None:
        return None
    return {"flat": mod.flat, "mult": mod.mult}


def normalize_slot(
    category: ItemCategory, raw_slot: Optional[str]
) -> Optional[EquipmentSlot]:
    """장착 슬롯 정규화. 명시 slot 우선, 없으면 category로 추론.
    potion/misc는 명시 slot이 있어도 장착 불가.
    """
    if category in (ItemCategory.POTION, ItemCategory.MISC):
        return None
    if raw_slot:
        return EquipmentSlot(raw_slot)
    return CATEGORY_DEFAULT_SLOT[category]


def item_from_dict(raw: dict[str, Any]) -> ItemDefinition:
    """아이템 문서 → ItemDefinition. KeyError/ValueError는 호출자가 처리."""
    category = ItemCategory(raw.get("category") or raw["type"])
    raw_stats = raw.get("stats") or {}
    timer = raw_stats.get("timer_multiplier", raw_stats.get("timeFactor"))
    stats = ItemStats(
        damage=_modifier_from_raw(raw_stats.get("damage")),
        defense=_modifier_from_raw(raw_stats.get("defense")),
        max_hp=_modifier_from_raw(raw_stats.get("max_hp", raw_stats.get("maxHp"))),
        heal=_modifier_from_raw(raw_stats.get("heal")),
        timer_multiplier=float(timer) if timer is not None else None,
    )
    max_dur = raw.get("max_durability", raw.get("maxDurability"))
    return ItemDefinition(
        item_id=raw.get("item_id") or raw["id"],
        name=raw.get("name", ""),
        category=category,
        price=int(raw.get("price", 0)),
        slot=normalize_slot(category, raw.get("slot")),
        stats=stats,
        max_durability=int(max_dur) if max_dur is not None else None,
        description=raw.get("description", ""),
        image_url=raw.get("image_url", raw.get("imageUrl")),
    )


def item_to_dict(item: ItemDefinition) -> dict[str, Any]:
    stats: dict[str, Any] = {}
    for key in ("damage", "defense", "max_hp", "heal"):
        mod = _modifier_to_raw(getattr(item.stats, key))
        if mod is not None:
            stats[key] = mod
    if item.stats.timer_multiplier is not None:
        stats["timer_multiplier"] = item.stats.timer_multiplier
    return {
        "item_id": item.item_id,
        "name": item.name,
        "category": item.category.value,
        "price": item.price,
        "slot": item.slot.value if item.slot else None,
        "stats": stats,
        "max_durability": item.max_durability,
        "description": item.description,
        "image_url": item.image_url,
    }


# ── 인벤토리 / 캐릭터 ────────────────────────────────────────


def inventory_item_from_dict(raw: dict[str, Any]) -> InventoryItem:
    return InventoryItem(
        item_id=raw["item_id"],
        instance_id=raw["instance_id"],
        obtained_at=int(raw.get("obtained_at", 0)),
        durability=raw.get("durability"),
        max_durability=raw.get("max_durability"),
    )


def inventory_item_to_dict(item: InventoryItem) -> dict[str, Any]:
    return {
        "item_id": item.item_id,
        "instance_id": item.instance_id,
        "obtained_at": item.obtained_at,
        "durability": item.durability,
        "max_durability": item.max_durability,
    }


def equipment_from_dict(raw: Optional[dict[str, Any]]) -> dict[EquipmentSlot, Optional[str]]:
    equipment = empty_equipment()
    for key, ref in (raw or {}).items():
        try:
            equipment[EquipmentSlot(key)] = ref or None
        except ValueError:
            continue  # 알 수 없는 슬롯은 버린다
    return equipment


def equipment_to_dict(equipment: dict[EquipmentSlot, Optional[str]]) -> dict[str, Optional[str]]:
    return {slot.value: ref for slot, ref in equipment.items()}


def character_from_dict(raw: dict[str, Any]) -> Character:
    max_hp = int(raw.get("max_hp", 15))
    return Character(
        owner_id=raw["owner_id"],
        name=raw.get("name", ""),
        level=int(raw.get("level", 1)),
        xp=int(raw.get("xp", 0)),
        gold=int(raw.get("gold", 0)),
        max_hp=max_hp,
        base_damage=int(raw.get("base_damage", 1)),
        base_defense=int(raw.get("base_defense", 0)),
        hp=int(raw.get("hp", max_hp)),
        class_name=raw.get("class_name", "Apprentice"),
        inventory=[inventory_item_from_dict(i) for i in raw.get("inventory", [])],
        equipment=equipment_from_dict(raw.get("equipment")),
    )


CHARACTER_FIELDS = (
    "name",
    "level",
    "xp",
    "gold",
    "max_hp",
    "base_damage",
    "base_defense",
    "hp",
    "class_name",
    "inventory",
    "equipment",
)


def character_field_value(character: Character, field_name: str) -> Any:
    """저장용 필드 값. inventory/equipment는 직렬화."""
    if field_name == "inventory":
        return [inventory_item_to_dict(i) for i in character.inventory]
    if field_name == "equipment":
        return equipment_to_dict(character.equipment)
    if field_name not in CHARACTER_FIELDS:
        raise KeyError(field_name)
    return getattr(character, field_name)


def character_to_dict(character: Character) -> dict[str, Any]:
    doc = {"owner_id": character.owner_id}
    for name in CHARACTER_FIELDS:
        doc[name] = character_field_value(character, name)
    return doc


# ── 적 / 문제 / 인카운터 ─────────────────────────────────────


def foe_from_dict(foe_id: str, raw: dict[str, Any]) -> Foe:
    return Foe(
        foe_id=foe_id,
        name=raw["name"],
        max_hp=int(raw["max_hp"]),
        attack_damage=int(raw.get("attack_damage", 1)),
        defense=int(raw.get("defense", 0)),
        image_url=raw.get("image_url"),
    )


_PROMPT_KEYS = {
    PromptType.TEXT: "prompt_text",
    PromptType.LATEX: "prompt_latex",
    PromptType.IMAGE: "prompt_image_url",
}


def question_from_dict(
    question_id: str,
    raw: dict[str, Any],
    default_time_limit: float = DEFAULT_TIME_LIMIT_SECONDS,
) -> Question:
    """문제 문서 → Question. prompt_type이 없으면 채워진 본문 필드로 추론."""
    if raw.get("prompt_type"):
        prompt_type = PromptType(raw["prompt_type"])
    else:
        prompt_type = next(
            (pt for pt, key in _PROMPT_KEYS.items() if raw.get(key)),
            PromptType.TEXT,
        )
    choices = tuple(str(c) for c in raw["choices"])
    correct_index = int(raw["correct_index"])
    if not 0 <= correct_index < len(choices):
        raise ValueError(f"correct_index out of range: {correct_index}")
    time_limit = raw.get("time_limit")
    order = raw.get("order")
    return Question(
        question_id=question_id,
        prompt_type=prompt_type,
        prompt=raw.get(_PROMPT_KEYS[prompt_type]) or "",
        choices=choices,
        correct_index=correct_index,
        time_limit=float(time_limit) if time_limit is not None else default_time_limit,
        difficulty=int(raw.get("difficulty", 1)),
        tags=tuple(raw.get("tags", [])),
        order=int(order) if order is not None else None,
        title=raw.get("title", ""),
    )


def encounter_from_dict(encounter_id: str, raw: dict[str, Any]) -> EncounterDefinition:
    """인카운터 문서 → EncounterDefinition.
    구버전 단일 foe_id / question_tag 필드도 허용.
    """
    foe_ids = raw.get("foe_ids") or [raw["foe_id"]]
    tags = raw.get("question_tags") or [raw["question_tag"]]
    return EncounterDefinition(
        encounter_id=encounter_id,
        title=raw.get("title", ""),
        foe_ids=tuple(foe_ids),
        question_tags=tuple(tags),
        win_reward_xp=int(raw.get("win_reward_xp", 0)),
        win_reward_gold=int(raw.get("win_reward_gold", 0)),
        win_item_ids=tuple(raw.get("win_item_ids", [])),
        time_multiplier=float(raw.get("time_multiplier", 1.0)),
        shuffle_questions=bool(raw.get("shuffle_questions", True)),
        description=raw.get("description", ""),
        visual=dict(raw.get("visual", {})),
    )
