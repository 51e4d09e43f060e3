"""문제별 카운트다운 타이머

고정 간격 tick으로 남은 시간을 깎고, 0이 되면 arm 시 받은 세대(generation)
토큰과 함께 on_expire를 호출한다. 토큰 검사는 상태 머신 쪽 책임:
cancel()이 이미 예약된 스레드 tick을 완전히 막지 못해도, 세대가 바뀐
만료 콜백은 상태 머신이 무시한다.

autorun=False면 스레드를 띄우지 않는다. 테스트와 외부 루프는 tick()을 직접 호출.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_TICK_SECONDS = 1.0

ExpireCallback = Callable[[int], None]


class TurnTimer:
    def __init__(
        self,
        on_expire: ExpireCallback,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        autorun: bool = True,
    ) -> None:
        if tick_seconds <= 0:
            raise ValueError(f"tick_seconds must be positive: {tick_seconds}")
        self._on_expire = on_expire
        self._tick_seconds = tick_seconds
        self._autorun = autorun

        self._lock = threading.Lock()
        self._thread_timer: Optional[threading.Timer] = None
        self._arm_id = 0  # 스레드 tick 식별용, arm/cancel마다 증가
        self._generation: Optional[int] = None
        self._time_left = 0.0
        self._max_time = 0.0
        self._running = False

    # === 상태 조회 ===

    @property
    def time_left(self) -> float:
        return self._time_left

    @property
    def max_time(self) -> float:
        return self._max_time

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def generation(self) -> Optional[int]:
        return self._generation

    # === 제어 ===

    def arm(self, seconds: float, generation: int) -> None:
        """기존 카운트다운을 취소하고 새로 시작.
        seconds <= 0 이면 다음 tick에서 바로 만료된다.
        """
        with self._lock:
            self._stop_locked()
            self._generation = generation
            self._time_left = max(0.0, seconds)
            self._max_time = self._time_left
            self._running = True
            self._schedule_locked()
        logger.debug("Timer armed: %.2fs (generation=%d)", seconds, generation)

    def cancel(self) -> None:
        """카운트다운 중지. 남은 시간 표시값은 유지."""
        with self._lock:
            self._stop_locked()
            self._generation = None

    def tick(self) -> None:
        """tick_seconds만큼 시간 경과. 0 도달 시 on_expire(generation) 1회 호출."""
        self._tick(None)

    # === 내부 ===

    def _tick(self, arm_id: Optional[int]) -> None:
        expired_generation: Optional[int] = None
        with self._lock:
            if arm_id is not None:
                if arm_id != self._arm_id:
                    return  # cancel/arm 이후 늦게 도착한 스레드 tick
                self._thread_timer = None
            if not self._running:
                return
            self._time_left = max(0.0, self._time_left - self._tick_seconds)
            if self._time_left <= 0:
                self._running = False
                expired_generation = self._generation
            else:
                self._schedule_locked()

        # 콜백은 락 밖에서 호출 (상태 머신이 cancel()을 다시 부를 수 있음)
        if expired_generation is not None:
            logger.debug("Timer expired (generation=%d)", expired_generation)
            try:
                self._on_expire(expired_generation)
            except Exception:
                logger.exception("Timer expire callback failed")

    def _stop_locked(self) -> None:
        self._running = False
        self._arm_id += 1
        if self._thread_timer is not None:
            self._thread_timer.cancel()
            self._thread_timer = None

    def _schedule_locked(self) -> None:
        if not self._autorun:
            return
        timer = threading.Timer(
            self._tick_seconds,
            self._on_thread_tick,
            args=(self._arm_id,),
        )
        timer.daemon = True
        self._thread_timer = timer
        timer.start()

    def _on_thread_tick(self, arm_id: int) -> None:
        self._tick(arm_id)
