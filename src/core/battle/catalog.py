"""아이템 정의 저장소: JSON 로드 + 동적 등록 + 인스턴스 생성"""

from __future__ import annotations

import json
import logging
import time
import uuid
from pathlib import Path
from typing import Optional

from .documents import item_from_dict
from .models import InventoryItem, ItemCategory, ItemDefinition

logger = logging.getLogger(__name__)


class ItemCatalog:
    """
    아이템 정의(ItemDefinition) 저장소.
    시드 데이터(JSON) + 저장소에서 읽어온 정의를 메모리에 보관.
    """

    def __init__(self, items: Optional[list[ItemDefinition]] = None) -> None:
        self._items: dict[str, ItemDefinition] = {}
        for item in items or []:
            self._items[item.item_id] = item

    def load_from_json(self, path: str | Path) -> int:
        """seed_items.json 로드. 반환: 로드된 수량.

        각 객체는 item_from_dict()로 정규화(slot 추론, 스칼라 stat → {flat, mult}).
        형식이 깨진 항목은 경고 후 건너뛴다.
        """
        path = Path(path)
        with path.open("r", encoding="utf-8") as f:
            raw_list: list[dict] = json.load(f)

        count = 0
        for raw in raw_list:
            try:
                item = item_from_dict(raw)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(
                    "Failed to load item: %s: %s", raw.get("item_id", raw.get("id", "?")), e
                )
                continue
            self._items[item.item_id] = item
            count += 1

        logger.info("Loaded %d item definitions from %s", count, path)
        return count

    def from_dict(self, raw: dict) -> ItemDefinition:
        """원시 문서 1건을 정규화해서 등록."""
        item = item_from_dict(raw)
        self.register(item)
        return item

    def register(self, item: ItemDefinition) -> None:
        """정의 등록. 이미 있으면 경고 후 덮어쓴다."""
        if item.item_id in self._items:
            logger.warning("Overwriting existing item definition: %s", item.item_id)
        self._items[item.item_id] = item

    def get(self, item_id: str) -> Optional[ItemDefinition]:
        return self._items.get(item_id)

    def get_all(self) -> list[ItemDefinition]:
        return list(self._items.values())

    def by_category(self, category: ItemCategory) -> list[ItemDefinition]:
        return [i for i in self._items.values() if i.category == category]

    def count(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._items

    def new_instance(self, item_id: str, obtained_at: Optional[int] = None) -> InventoryItem:
        """새 인벤토리 개체 생성 (구매/전리품).
        내구도가 정의된 아이템은 최대 내구도로 시작.
        """
        item = self._items.get(item_id)
        if item is None:
            raise ValueError(f"Unknown item definition: {item_id}")
        if obtained_at is None:
            obtained_at = int(time.time() * 1000)
        return InventoryItem(
            item_id=item_id,
            instance_id=str(uuid.uuid4()),
            obtained_at=obtained_at,
            durability=item.max_durability,
            max_durability=item.max_durability,
        )
