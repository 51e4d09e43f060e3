"""인카운터 상태 머신

lobby → intro → battle → (won | lost | escaped)

플레이어 1명당 1개. 모든 전이는 self._lock 아래에서 직렬 처리되고,
전이마다 세대(generation) 토큰을 올린다. 타이머 만료 콜백은 arm 시점의
세대가 현재 세대와 같을 때만 시간초과로 처리된다. 답안 제출과 늦게 도착한
만료 콜백이 동시에 턴을 해결하는 일을 막는다.

저장 실패(BattlePersistenceError)는 상태 메시지로만 알리고 전투는 계속한다.
"""

from __future__ import annotations

import logging
import random
import threading
from typing import Any, Iterable, Optional

from src.core.event_bus import EventBus, GameEvent
from src.core.event_types import EventTypes

from .catalog import ItemCatalog
from .durability import (
    ATTACK_WEAR_SLOT,
    DEFEND_WEAR_SLOT,
    WEAR_PER_ACTION,
    DegradeResult,
    degrade,
)
from .models import (
    ActiveEncounterState,
    BattlePersistenceError,
    Character,
    EncounterConfigError,
    EncounterNotFoundError,
    EncounterPhase,
    EquipmentSlot,
    InvalidTransitionError,
    LossReason,
    Question,
    TurnOutcome,
    TurnState,
)
from .progression import (
    LEVEL_CAP,
    LOSS_GOLD_PENALTY_RATE,
    apply_defeat,
    apply_victory_rewards,
)
from .stats import (
    damage_against,
    effective_max_hp,
    incoming_damage,
    resolve_timer_seconds,
    timer_multiplier,
)
from .store import BattleStore
from .timer import DEFAULT_TICK_SECONDS, TurnTimer

logger = logging.getLogger(__name__)

# 턴마다 저장하는 캐릭터 필드
TURN_FIELDS = ("hp", "inventory")
REWARD_FIELDS = ("xp", "level", "max_hp", "hp", "base_damage", "base_defense", "inventory")


def order_questions(
    questions: list[Question], shuffle: bool, rng: random.Random
) -> list[Question]:
    """shuffle=False: order 필드로 안정 정렬 (order 없는 문제는 뒤로, 원래 순서 유지)
    shuffle=True: 균등 무작위 순열
    """
    ordered = list(questions)
    if shuffle:
        rng.shuffle(ordered)
    else:
        ordered.sort(key=lambda q: (q.order is None, q.order or 0))
    return ordered


class EncounterStateMachine:
    """플레이어 1명의 전투 진행기"""

    def __init__(
        self,
        owner_id: str,
        store: BattleStore,
        catalog: ItemCatalog,
        event_bus: Optional[EventBus] = None,
        rng: Optional[random.Random] = None,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        autorun_timer: bool = True,
        loss_penalty_rate: float = LOSS_GOLD_PENALTY_RATE,
        level_cap: int = LEVEL_CAP,
    ) -> None:
        self.owner_id = owner_id
        self._store = store
        self._catalog = catalog
        self._bus = event_bus
        self._rng = rng or random.Random()
        self._loss_penalty_rate = loss_penalty_rate
        self._level_cap = level_cap

        self._lock = threading.RLock()
        self._generation = 0
        self._state: Optional[ActiveEncounterState] = None
        self._character: Optional[Character] = None
        self._messages: list[str] = []
        self.status_message = ""
        self.save_failed = False

        self._timer = TurnTimer(
            self._on_timer_expired, tick_seconds=tick_seconds, autorun=autorun_timer
        )

    # === 조회 ===

    @property
    def phase(self) -> EncounterPhase:
        if self._state is None:
            return EncounterPhase.LOBBY
        return self._state.phase

    @property
    def state(self) -> Optional[ActiveEncounterState]:
        return self._state

    @property
    def character(self) -> Optional[Character]:
        return self._character

    @property
    def timer(self) -> TurnTimer:
        return self._timer

    @property
    def generation(self) -> int:
        return self._generation

    # === lobby → intro ===

    def select_encounter(self, encounter_id: str) -> ActiveEncounterState:
        """인카운터 선택. 적/문제 풀을 불러오고 시작 HP를 계산.

        조회 실패 시 EncounterConfigError. 상태는 lobby로 돌아가고
        status_message에 사유가 남는다. 재시도하지 않는다.
        """
        with self._lock:
            if self.phase == EncounterPhase.BATTLE:
                raise InvalidTransitionError("Cannot select an encounter mid-battle")
            self._begin_transition()
            self._stop_turn()
            self._state = None
            try:
                state = self._load_encounter(encounter_id)
            except (EncounterConfigError, BattlePersistenceError) as e:
                self._state = None
                self._character = None
                self._messages = [f"Error: {e}"]
                self._finish_transition()
                logger.warning(
                    "Encounter %s aborted for %s: %s", encounter_id, self.owner_id, e
                )
                if isinstance(e, EncounterConfigError):
                    raise
                raise EncounterConfigError(str(e)) from e

            self._state = state
            self._say(f"{state.foe.name} appears!")
            self._emit(
                EventTypes.ENCOUNTER_STARTED,
                {"encounter_id": encounter_id, "foe_id": state.foe.foe_id},
            )
            logger.info(
                "Encounter %s selected by %s (%d questions)",
                encounter_id,
                self.owner_id,
                state.total_turns,
            )
            self._finish_transition()
            return state

    def _load_encounter(self, encounter_id: str) -> ActiveEncounterState:
        character = self._store.get_character(self.owner_id)
        if character is None:
            raise EncounterConfigError(f"Character not found: {self.owner_id}")
        encounter = self._store.get_encounter(encounter_id)
        if encounter is None:
            raise EncounterNotFoundError(f"Encounter not found: {encounter_id}")
        foe = self._store.get_foe(encounter.primary_foe_id)
        if foe is None:
            raise EncounterConfigError(f"Foe not found: {encounter.primary_foe_id}")
        questions = self._store.query_questions(encounter.question_tags)
        if not questions:
            raise EncounterConfigError(
                "No questions found for tags: " + ", ".join(encounter.question_tags)
            )

        max_hp = effective_max_hp(character, self._catalog.get)
        # 이전 부상 유지. 사망(0) 상태였거나 기록이 없으면 최대치로 시작
        player_hp = min(character.hp, max_hp) if character.hp > 0 else max_hp
        character.hp = player_hp
        self._character = character

        return ActiveEncounterState(
            encounter=encounter,
            foe=foe,
            questions=order_questions(
                questions, encounter.shuffle_questions, self._rng
            ),
            foe_hp=foe.max_hp,
            player_hp=player_hp,
            player_max_hp=max_hp,
            phase=EncounterPhase.INTRO,
        )

    # === intro → battle ===

    def begin(self) -> None:
        """플레이어 준비 완료. 첫 문제 타이머 시작."""
        with self._lock:
            state = self._require_phase(EncounterPhase.INTRO)
            self._begin_transition()
            state.phase = EncounterPhase.BATTLE
            self._emit(EventTypes.BATTLE_BEGAN, {"encounter_id": state.encounter.encounter_id})
            self._arm_turn()
            self._finish_transition()

    # === battle 입력 ===

    def answer(self, choice_index: int) -> TurnOutcome:
        """선택지 제출. 정답 → 공격, 오답 → 피격 후 확인 대기."""
        with self._lock:
            state = self._require_awaiting()
            question = state.current_question
            if not 0 <= choice_index < len(question.choices):
                raise ValueError(f"Choice index out of range: {choice_index}")
            self._begin_transition()
            self._stop_turn()
            if question.is_correct(choice_index):
                outcome = TurnOutcome.CORRECT
                self._resolve_hit(question, choice_index)
            else:
                outcome = TurnOutcome.WRONG
                self._resolve_miss(question, outcome, choice_index)
            self._finish_transition()
            return outcome

    def skip(self) -> None:
        """문제 건너뛰기. 피격 후 바로 다음 문제."""
        with self._lock:
            state = self._require_awaiting()
            self._begin_transition()
            self._stop_turn()
            self._resolve_miss(state.current_question, TurnOutcome.SKIPPED, None)
            self._finish_transition()

    def acknowledge(self) -> None:
        """오답/시간초과 확인 ("next"). paused → 다음 문제."""
        with self._lock:
            state = self._require_phase(EncounterPhase.BATTLE)
            if state.turn_state != TurnState.PAUSED:
                raise InvalidTransitionError("Nothing to acknowledge")
            self._begin_transition()
            self._advance()
            self._finish_transition()

    def escape(self) -> None:
        """전투 이탈. 현재 문제는 해결하지 않고, 현재 HP만 저장. 골드 페널티 없음."""
        with self._lock:
            state = self._require_phase(EncounterPhase.BATTLE)
            self._begin_transition()
            self._stop_turn()
            state.phase = EncounterPhase.ESCAPED
            self._character.hp = state.player_hp
            self._persist(TURN_FIELDS)
            self._say("You escaped!")
            self._emit(
                EventTypes.ENCOUNTER_ESCAPED,
                {"encounter_id": state.encounter.encounter_id, "hp": state.player_hp},
            )
            logger.info("Encounter escaped by %s", self.owner_id)
            self._finish_transition()

    def leave(self) -> None:
        """화면 이탈. 타이머 취소 후 메모리 상태 폐기. 저장된 기록만 남는다."""
        with self._lock:
            self._stop_turn()
            self._state = None
            self._character = None
            self._messages = []
            self.status_message = ""
            self.save_failed = False

    def expire_now(self) -> None:
        """남은 시간을 모두 소진 (외부 tick 루프/테스트용)"""
        while self._timer.is_running:
            self._timer.tick()

    # === 타이머 콜백 ===

    def _on_timer_expired(self, generation: int) -> None:
        with self._lock:
            state = self._state
            if (
                state is None
                or state.phase != EncounterPhase.BATTLE
                or state.turn_state != TurnState.AWAITING_ANSWER
                or generation != self._generation
            ):
                logger.warning(
                    "Stale timer expiry ignored (generation=%d, current=%d)",
                    generation,
                    self._generation,
                )
                return
            self._begin_transition()
            self._stop_turn()
            self._say("Time's up!")
            self._emit(
                EventTypes.TURN_TIMED_OUT,
                {"question_id": state.current_question.question_id},
            )
            self._resolve_miss(state.current_question, TurnOutcome.TIMEOUT, None)
            self._finish_transition()

    # === 턴 해결 ===

    def _resolve_hit(self, question: Question, choice_index: int) -> None:
        state = self._state
        dmg = damage_against(self._character, state.foe, self._catalog.get)
        state.foe_hp = max(0, state.foe_hp - dmg)
        state.last_outcome = TurnOutcome.CORRECT
        state.last_damage_dealt = dmg
        state.last_damage_taken = 0
        self._say(f"Hit! You dealt {dmg} damage.")

        self._record(question, choice_index, TurnOutcome.CORRECT)
        self._wear(ATTACK_WEAR_SLOT)
        self._persist(TURN_FIELDS)
        self._emit_turn(question, TurnOutcome.CORRECT)

        if state.foe_hp <= 0:
            self._win()
        else:
            self._advance()

    def _resolve_miss(
        self, question: Question, outcome: TurnOutcome, choice_index: Optional[int]
    ) -> None:
        state = self._state
        dmg = incoming_damage(self._character, state.foe.attack_damage, self._catalog.get)
        state.player_hp = max(0, state.player_hp - dmg)
        self._character.hp = state.player_hp
        state.last_outcome = outcome
        state.last_damage_dealt = 0
        state.last_damage_taken = dmg
        if outcome == TurnOutcome.WRONG:
            self._say(f"Wrong! You took {dmg} damage.")
        else:
            self._say(f"You took {dmg} damage.")

        self._record(question, choice_index, outcome)
        self._wear(DEFEND_WEAR_SLOT)
        self._persist(TURN_FIELDS)
        self._emit_turn(question, outcome)

        if state.player_hp <= 0:
            self._lose(LossReason.HP_DEPLETED)
        elif outcome == TurnOutcome.SKIPPED:
            self._advance()
        else:
            # 확인 전까지 답안/타이머 모두 정지
            state.turn_state = TurnState.PAUSED

    def _advance(self) -> None:
        state = self._state
        state.turn_index += 1
        if state.turn_index >= state.total_turns:
            self._lose(LossReason.OUT_OF_TURNS)
            return
        self._arm_turn()

    def _arm_turn(self) -> None:
        """현재 문제 타이머 시작. 주무기 타이머 보너스(>1) 사용 시 마모."""
        state = self._state
        question = state.current_question
        multiplier = timer_multiplier(self._character, self._catalog.get)
        seconds = resolve_timer_seconds(
            question.time_limit, state.encounter.time_multiplier, multiplier
        )
        if multiplier > 1:
            if self._wear(EquipmentSlot.MAIN_HAND).changed:
                self._persist(("inventory",))

        state.turn_state = TurnState.AWAITING_ANSWER
        self._generation += 1
        self._timer.arm(seconds, self._generation)

    def _win(self) -> None:
        state = self._state
        character = self._character
        state.phase = EncounterPhase.WON

        reward = apply_victory_rewards(
            character,
            state.encounter,
            new_instance=self._catalog.new_instance,
            level_cap=self._level_cap,
        )
        state.reward = reward
        state.player_hp = character.hp

        self._persist(REWARD_FIELDS)
        if reward.gold_gained:
            self._increment_gold(reward.gold_gained)

        msg = f"Victory! +{reward.xp_gained} XP, +{reward.gold_gained} gold."
        if reward.levels_gained:
            msg += f" Level up! Now Lv.{reward.new_level}."
        if reward.dropped_items:
            msg += f" Loot: {', '.join(self._item_name(i.item_id) for i in reward.dropped_items)}."
        self._say(msg)

        self._emit(
            EventTypes.ENCOUNTER_WON,
            {
                "encounter_id": state.encounter.encounter_id,
                "xp": reward.xp_gained,
                "gold": reward.gold_gained,
            },
        )
        if reward.levels_gained:
            self._emit(
                EventTypes.CHARACTER_LEVELED_UP,
                {"level": reward.new_level, "levels_gained": reward.levels_gained},
            )
        logger.info(
            "Encounter %s won by %s (Lv.%d)",
            state.encounter.encounter_id,
            self.owner_id,
            character.level,
        )

    def _lose(self, reason: LossReason) -> None:
        state = self._state
        character = self._character
        self._timer.cancel()
        state.phase = EncounterPhase.LOST
        state.loss_reason = reason

        # 부활: 기록상 HP는 최대치로 복구
        full_hp = effective_max_hp(character, self._catalog.get)
        penalty = apply_defeat(character, full_hp, self._loss_penalty_rate)
        self._persist(TURN_FIELDS)
        if penalty:
            self._increment_gold(-penalty)

        if reason == LossReason.OUT_OF_TURNS:
            self._say(f"Ran out of turns! {state.foe.name} survived. Lost {penalty} gold.")
        else:
            self._say(f"You were defeated. Lost {penalty} gold.")
        self._emit(
            EventTypes.ENCOUNTER_LOST,
            {
                "encounter_id": state.encounter.encounter_id,
                "reason": reason.value,
                "gold_penalty": penalty,
            },
        )
        logger.info(
            "Encounter %s lost by %s (%s)",
            state.encounter.encounter_id,
            self.owner_id,
            reason.value,
        )

    # === 부수 효과 ===

    def _wear(self, slot: EquipmentSlot) -> DegradeResult:
        result = degrade(self._character, slot, WEAR_PER_ACTION)
        if result.just_broke:
            self._say(f"Your {self._item_name(result.item_id)} broke!")
            self._emit(
                EventTypes.ITEM_BROKEN,
                {"instance_id": result.instance_id, "item_id": result.item_id, "slot": slot.value},
                source=f"durability:{self.owner_id}:{slot.value}",
            )
        return result

    def _persist(self, fields: Iterable[str]) -> None:
        try:
            self._store.save_character(self._character, fields)
        except BattlePersistenceError as e:
            self._save_failed(e)

    def _increment_gold(self, delta: int) -> None:
        try:
            self._character.gold = self._store.increment_character(
                self.owner_id, "gold", delta
            )
        except BattlePersistenceError as e:
            self._save_failed(e)

    def _record(
        self, question: Question, choice_index: Optional[int], outcome: TurnOutcome
    ) -> None:
        try:
            self._store.record_submission(
                self.owner_id,
                self._state.encounter.encounter_id,
                question.question_id,
                choice_index,
                outcome,
            )
        except BattlePersistenceError as e:
            self._save_failed(e)

    def _save_failed(self, error: Exception) -> None:
        # 메모리 상태는 유지. 저장소와 어긋날 수 있음
        logger.warning("Save failed for %s: %s", self.owner_id, error)
        if not self.save_failed:
            self._messages.append("Could not save progress.")
        self.save_failed = True
        self._emit(EventTypes.PERSISTENCE_FAILED, {"error": str(error)})

    # === 내부 헬퍼 ===

    def _require_phase(self, phase: EncounterPhase) -> ActiveEncounterState:
        if self.phase != phase:
            raise InvalidTransitionError(
                f"Expected phase {phase.value}, current phase is {self.phase.value}"
            )
        return self._state

    def _require_awaiting(self) -> ActiveEncounterState:
        state = self._require_phase(EncounterPhase.BATTLE)
        if state.turn_state != TurnState.AWAITING_ANSWER:
            raise InvalidTransitionError("Turn is paused; acknowledge first")
        return state

    def _stop_turn(self) -> None:
        """진행 중 타이머 취소 + 세대 증가. 이후 도착하는 만료 콜백은 무시된다."""
        self._timer.cancel()
        self._generation += 1

    def _begin_transition(self) -> None:
        self._messages = []
        self.save_failed = False
        if self._bus is not None:
            self._bus.reset_chain()

    def _finish_transition(self) -> None:
        self.status_message = " ".join(self._messages)

    def _say(self, message: str) -> None:
        self._messages.append(message)

    def _item_name(self, item_id: Optional[str]) -> str:
        definition = self._catalog.get(item_id) if item_id else None
        return definition.name if definition and definition.name else str(item_id)

    def _emit(
        self, event_type: str, data: dict[str, Any], source: Optional[str] = None
    ) -> None:
        if self._bus is None:
            return
        payload = {"owner_id": self.owner_id, **data}
        self._bus.emit(
            GameEvent(
                event_type=event_type,
                data=payload,
                source=source or f"battle:{self.owner_id}",
            )
        )

    def _emit_turn(self, question: Question, outcome: TurnOutcome) -> None:
        state = self._state
        self._emit(
            EventTypes.TURN_RESOLVED,
            {
                "encounter_id": state.encounter.encounter_id,
                "question_id": question.question_id,
                "turn_index": state.turn_index,
                "outcome": outcome.value,
                "foe_hp": state.foe_hp,
                "player_hp": state.player_hp,
            },
        )

    # === 표시용 스냅샷 ===

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            view: dict[str, Any] = {
                "owner_id": self.owner_id,
                "phase": self.phase.value,
                "status_message": self.status_message,
                "save_failed": self.save_failed,
            }
            state = self._state
            if state is None:
                return view

            question = state.current_question
            view.update(
                {
                    "encounter_id": state.encounter.encounter_id,
                    "encounter_title": state.encounter.title,
                    "turn_state": state.turn_state.value,
                    "turn_index": state.turn_index,
                    "total_turns": state.total_turns,
                    "foe": {
                        "foe_id": state.foe.foe_id,
                        "name": state.foe.name,
                        "hp": state.foe_hp,
                        "max_hp": state.foe.max_hp,
                        "image_url": state.foe.image_url,
                    },
                    "player_hp": state.player_hp,
                    "player_max_hp": state.player_max_hp,
                    "time_left": self._timer.time_left,
                    "max_time": self._timer.max_time,
                    "last_outcome": state.last_outcome.value if state.last_outcome else None,
                    "last_damage_dealt": state.last_damage_dealt,
                    "last_damage_taken": state.last_damage_taken,
                    "loss_reason": state.loss_reason.value if state.loss_reason else None,
                    "question": None,
                    "reward": None,
                }
            )
            if state.phase == EncounterPhase.BATTLE and question is not None:
                # correct_index는 내보내지 않는다
                view["question"] = {
                    "question_id": question.question_id,
                    "title": question.title,
                    "prompt_type": question.prompt_type.value,
                    "prompt": question.prompt,
                    "choices": list(question.choices),
                }
            if state.reward is not None:
                reward = state.reward
                view["reward"] = {
                    "xp_gained": reward.xp_gained,
                    "gold_gained": reward.gold_gained,
                    "levels_gained": reward.levels_gained,
                    "new_level": reward.new_level,
                    "hp_gained": reward.hp_gained,
                    "attack_gained": reward.attack_gained,
                    "defense_gained": reward.defense_gained,
                    "dropped_item_ids": [i.item_id for i in reward.dropped_items],
                }
            return view
