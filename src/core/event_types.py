"""전투 이벤트 유형 상수"""


class EventTypes:
    """이벤트 유형 문자열 상수"""

    # encounter lifecycle
    ENCOUNTER_STARTED = "encounter_started"
    BATTLE_BEGAN = "battle_began"
    ENCOUNTER_WON = "encounter_won"
    ENCOUNTER_LOST = "encounter_lost"
    ENCOUNTER_ESCAPED = "encounter_escaped"

    # turn
    TURN_RESOLVED = "turn_resolved"
    TURN_TIMED_OUT = "turn_timed_out"

    # item / character
    ITEM_BROKEN = "item_broken"
    CHARACTER_LEVELED_UP = "character_leveled_up"
    CHARACTER_REGISTERED = "character_registered"

    # infra
    PERSISTENCE_FAILED = "persistence_failed"
