"""전투 API 통합 테스트

TestClient + MemoryBattleStore. 타이머는 수동 모드 (autorun=False).
"""

import random
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api.battle import router as battle_router
from src.core.battle.catalog import ItemCatalog
from src.core.battle.models import EncounterDefinition
from src.core.event_bus import EventBus
from src.services.battle_service import BattleService
from src.services.store.memory import MemoryBattleStore

SEED_ITEMS_PATH = Path("src/data/seed_items.json")
SEED_CONTENT_PATH = Path("src/data/seed_content.json")


@pytest.fixture()
def service() -> BattleService:
    catalog = ItemCatalog()
    catalog.load_from_json(SEED_ITEMS_PATH)
    svc = BattleService(
        MemoryBattleStore(),
        catalog,
        EventBus(),
        autorun_timer=False,
        rng_factory=lambda: random.Random(11),
    )
    svc.sync_items_to_store()
    svc.seed_content(SEED_CONTENT_PATH)
    yield svc
    svc.shutdown()


@pytest.fixture()
def client(service) -> TestClient:
    app = FastAPI()
    app.include_router(battle_router)
    app.state.battle_service = service
    return TestClient(app)


@pytest.fixture()
def player(client) -> str:
    response = client.post("/battle/register", json={"owner_id": "p1", "name": "Ana"})
    assert response.status_code == 200
    return "p1"


def _correct_index(service: BattleService, owner_id: str) -> int:
    question_id = service.get_session(owner_id).snapshot()["question"]["question_id"]
    return service.store.get_question(question_id).correct_index


# ── 캐릭터 ────────────────────────────────────────────────────


class TestCharacterApi:
    def test_register(self, client) -> None:
        response = client.post("/battle/register", json={"owner_id": "p1", "name": "Ana"})
        data = response.json()
        assert response.status_code == 200
        assert data["name"] == "Ana"
        assert data["hp"] == data["effective_max_hp"] == 15
        assert data["equipment"] == {"mainHand": None, "offHand": None, "armor": None, "head": None}

    def test_register_validation(self, client) -> None:
        response = client.post("/battle/register", json={"owner_id": "", "name": "Ana"})
        assert response.status_code == 422

    def test_get_character_not_found(self, client) -> None:
        assert client.get("/battle/character/ghost").status_code == 404

    def test_list_encounters(self, client) -> None:
        data = client.get("/battle/encounters").json()
        assert [e["encounter_id"] for e in data] == ["golem-gate", "meadow-slime"]
        assert data[0]["foe_ids"] == ["golem-algebra"]


# ── 인카운터 ──────────────────────────────────────────────────


class TestEncounterApi:
    def test_lobby_state(self, client, player) -> None:
        data = client.get(f"/battle/{player}/state").json()
        assert data["phase"] == "lobby"
        assert data["question"] is None

    def test_unregistered_state_is_lobby(self, client, service) -> None:
        response = client.get("/battle/ghost/state")
        assert response.status_code == 200
        assert response.json()["phase"] == "lobby"
        assert client.post("/battle/ghost/begin").status_code == 409
        assert service.find_session("ghost") is None

    def test_begin_without_selection_conflicts(self, client, player, service) -> None:
        assert client.post(f"/battle/{player}/begin").status_code == 409
        assert client.post(f"/battle/{player}/escape").status_code == 409
        assert service.find_session(player) is None

    def test_loadout_locked_in_intro(self, client, player, service) -> None:
        inst = service.grant_item(player, "potion-small")
        client.post(f"/battle/{player}/encounters/meadow-slime/select")
        response = client.post(f"/battle/{player}/use-potion", json={"instance_id": inst.instance_id})
        assert response.status_code == 409

    def test_select_unknown_encounter(self, client, player) -> None:
        response = client.post(f"/battle/{player}/encounters/nowhere/select")
        assert response.status_code == 404

    def test_select_unregistered_owner(self, client) -> None:
        response = client.post("/battle/ghost/encounters/meadow-slime/select")
        assert response.status_code == 404

    def test_broken_encounter_config(self, client, player, service) -> None:
        service.store.put_encounter(
            EncounterDefinition(
                encounter_id="empty-cave",
                title="Empty Cave",
                foe_ids=("slime-fractions",),
                question_tags=("no-such-tag",),
            )
        )
        response = client.post(f"/battle/{player}/encounters/empty-cave/select")
        assert response.status_code == 422
        assert client.get(f"/battle/{player}/state").json()["phase"] == "lobby"

    def test_answer_before_begin_conflicts(self, client, player) -> None:
        client.post(f"/battle/{player}/encounters/meadow-slime/select")
        response = client.post(f"/battle/{player}/answer", json={"choice_index": 0})
        assert response.status_code == 409

    def test_answer_out_of_range(self, client, player) -> None:
        client.post(f"/battle/{player}/encounters/meadow-slime/select")
        client.post(f"/battle/{player}/begin")
        response = client.post(f"/battle/{player}/answer", json={"choice_index": 9})
        assert response.status_code == 400

    def test_question_hides_answer(self, client, player) -> None:
        client.post(f"/battle/{player}/encounters/meadow-slime/select")
        data = client.post(f"/battle/{player}/begin").json()
        assert data["phase"] == "battle"
        assert data["question"]["question_id"] == "frac-1"
        assert "correct_index" not in data["question"]
        assert data["max_time"] == 20.0

    def test_wrong_answer_then_next(self, client, player) -> None:
        client.post(f"/battle/{player}/encounters/meadow-slime/select")
        client.post(f"/battle/{player}/begin")
        data = client.post(f"/battle/{player}/answer", json={"choice_index": 0}).json()
        assert data["turn_state"] == "paused"
        assert data["last_outcome"] == "wrong"
        assert data["player_hp"] == 12
        # 확인 전에는 다른 답 불가
        assert client.post(f"/battle/{player}/skip").status_code == 409
        data = client.post(f"/battle/{player}/next").json()
        assert data["turn_state"] == "awaiting_answer"
        assert data["turn_index"] == 1

    def test_escape_and_leave(self, client, player, service) -> None:
        client.post(f"/battle/{player}/encounters/meadow-slime/select")
        client.post(f"/battle/{player}/begin")
        client.post(f"/battle/{player}/skip")
        data = client.post(f"/battle/{player}/escape").json()
        assert data["phase"] == "escaped"
        assert service.get_character(player).hp == 12
        data = client.post(f"/battle/{player}/leave").json()
        assert data["phase"] == "lobby"

    def test_full_victory(self, client, player, service) -> None:
        assert client.get(f"/battle/{player}/inventory").json() == []
        inst = service.grant_item(player, "sword-wood")
        client.post(f"/battle/{player}/equip", json={"instance_id": inst.instance_id})

        client.post(f"/battle/{player}/encounters/meadow-slime/select")
        client.post(f"/battle/{player}/begin")
        for _ in range(2):
            data = client.post(
                f"/battle/{player}/answer",
                json={"choice_index": _correct_index(service, player)},
            ).json()

        assert data["phase"] == "won"
        assert data["reward"]["xp_gained"] == 40
        assert data["reward"]["dropped_item_ids"] == ["potion-small"]
        character = client.get(f"/battle/character/{player}").json()
        assert (character["xp"], character["gold"]) == (40, 10)

        history = client.get(f"/battle/{player}/history").json()
        assert [h["question_id"] for h in history] == ["frac-1", "frac-2"]
        assert all(h["is_correct"] for h in history)
        sword = next(
            row for row in client.get(f"/battle/{player}/inventory").json()
            if row["item_id"] == "sword-wood"
        )
        assert sword["durability"] == 18
        assert sword["durability_ratio"] == 0.9


# ── 장비 ──────────────────────────────────────────────────────


class TestLoadoutApi:
    def test_equip_and_unequip(self, client, player, service) -> None:
        inst = service.grant_item(player, "calculator-shield")
        data = client.post(f"/battle/{player}/equip", json={"instance_id": inst.instance_id}).json()
        assert data["details"]["slot"] == "offHand"
        assert data["character"]["effective_defense"] == 3

        inventory = client.get(f"/battle/{player}/inventory").json()
        assert inventory[0]["equipped"] is True

        data = client.post(f"/battle/{player}/unequip", json={"slot": "offHand"}).json()
        assert data["details"]["instance_id"] == inst.instance_id
        assert data["character"]["equipment"]["offHand"] is None

    def test_unknown_slot(self, client, player) -> None:
        response = client.post(f"/battle/{player}/unequip", json={"slot": "tail"})
        assert response.status_code == 400

    def test_equip_missing_instance(self, client, player) -> None:
        response = client.post(f"/battle/{player}/equip", json={"instance_id": "nope"})
        assert response.status_code == 400

    def test_use_potion(self, client, player, service) -> None:
        hero = service.get_character(player)
        hero.hp = 1
        service.store.save_character(hero, ("hp",))
        inst = service.grant_item(player, "potion-small")
        data = client.post(f"/battle/{player}/use-potion", json={"instance_id": inst.instance_id}).json()
        assert data["details"]["healed"] == 10
        assert data["character"]["hp"] == 11

    def test_loadout_locked_in_battle(self, client, player, service) -> None:
        inst = service.grant_item(player, "calculator-shield")
        client.post(f"/battle/{player}/encounters/meadow-slime/select")
        client.post(f"/battle/{player}/begin")
        response = client.post(f"/battle/{player}/equip", json={"instance_id": inst.instance_id})
        assert response.status_code == 409

    def test_history_unknown_owner(self, client) -> None:
        assert client.get("/battle/ghost/history").status_code == 404
