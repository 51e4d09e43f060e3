"""Battle API endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Request

from src.api.schemas import (
    AnswerRequest,
    BattleStateResponse,
    CharacterInfo,
    EncounterInfo,
    EquipRequest,
    ErrorResponse,
    InventoryEntry,
    LoadoutResponse,
    RegisterRequest,
    SubmissionEntry,
    UnequipRequest,
    UsePotionRequest,
)
from src.core.battle.models import (
    BattleError,
    BattlePersistenceError,
    EncounterConfigError,
    EncounterNotFoundError,
    EquipmentSlot,
    InvalidTransitionError,
    LoadoutError,
)
from src.core.logging import get_logger
from src.services.battle_service import BattleService, CharacterNotFoundError

logger = get_logger(__name__)

router = APIRouter(prefix="/battle", tags=["battle"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


def get_battle_service(request: Request) -> BattleService:
    """BattleService 인스턴스 반환 (의존성 주입)"""
    service: BattleService = request.app.state.battle_service
    return service


def _to_http(e: Exception) -> HTTPException:
    """도메인 예외 → HTTP 상태 코드"""
    if isinstance(e, (CharacterNotFoundError, EncounterNotFoundError)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, EncounterConfigError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, (LoadoutError, ValueError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, BattlePersistenceError):
        return HTTPException(status_code=503, detail=str(e))
    logger.error("Unhandled battle error: %s", e)
    return HTTPException(status_code=500, detail=str(e))


def _state(service: BattleService, owner_id: str) -> BattleStateResponse:
    return BattleStateResponse(**service.session_view(owner_id))


def _character(service: BattleService, owner_id: str) -> CharacterInfo:
    return CharacterInfo(**service.get_character_view(owner_id))


# === 캐릭터 ===


@router.post("/register", response_model=CharacterInfo)
def register_character(
    body: RegisterRequest,
    service: BattleService = Depends(get_battle_service),
) -> CharacterInfo:
    """
    캐릭터 등록

    시작 스탯으로 새 캐릭터를 만든다. 이미 있으면 기존 기록을 반환.
    """
    try:
        service.register_character(body.owner_id, body.name)
        return _character(service, body.owner_id)
    except BattleError as e:
        raise _to_http(e)


@router.get(
    "/character/{owner_id}",
    response_model=CharacterInfo,
    responses={404: {"model": ErrorResponse}},
)
def get_character(
    owner_id: str,
    service: BattleService = Depends(get_battle_service),
) -> CharacterInfo:
    try:
        return _character(service, owner_id)
    except BattleError as e:
        raise _to_http(e)


@router.get("/encounters", response_model=list[EncounterInfo])
def list_encounters(
    service: BattleService = Depends(get_battle_service),
) -> list[EncounterInfo]:
    return [
        EncounterInfo(
            encounter_id=e.encounter_id,
            title=e.title,
            description=e.description,
            foe_ids=list(e.foe_ids),
            question_tags=list(e.question_tags),
            win_reward_xp=e.win_reward_xp,
            win_reward_gold=e.win_reward_gold,
            time_multiplier=e.time_multiplier,
        )
        for e in service.list_encounters()
    ]


# === 인카운터 진행 ===


@router.get("/{owner_id}/state", response_model=BattleStateResponse)
def get_state(
    owner_id: str,
    service: BattleService = Depends(get_battle_service),
) -> BattleStateResponse:
    return _state(service, owner_id)


@router.post(
    "/{owner_id}/encounters/{encounter_id}/select",
    response_model=BattleStateResponse,
    responses=ERROR_RESPONSES,
)
def select_encounter(
    owner_id: str,
    encounter_id: str,
    service: BattleService = Depends(get_battle_service),
) -> BattleStateResponse:
    """lobby → intro"""
    try:
        service.select_encounter(owner_id, encounter_id)
    except BattleError as e:
        raise _to_http(e)
    return _state(service, owner_id)


@router.post(
    "/{owner_id}/begin", response_model=BattleStateResponse, responses=ERROR_RESPONSES
)
def begin(
    owner_id: str,
    service: BattleService = Depends(get_battle_service),
) -> BattleStateResponse:
    """intro → battle"""
    try:
        service.require_session(owner_id).begin()
    except BattleError as e:
        raise _to_http(e)
    return _state(service, owner_id)


@router.post(
    "/{owner_id}/answer", response_model=BattleStateResponse, responses=ERROR_RESPONSES
)
def answer(
    owner_id: str,
    body: AnswerRequest,
    service: BattleService = Depends(get_battle_service),
) -> BattleStateResponse:
    try:
        service.require_session(owner_id).answer(body.choice_index)
    except (BattleError, ValueError) as e:
        raise _to_http(e)
    return _state(service, owner_id)


@router.post(
    "/{owner_id}/skip", response_model=BattleStateResponse, responses=ERROR_RESPONSES
)
def skip(
    owner_id: str,
    service: BattleService = Depends(get_battle_service),
) -> BattleStateResponse:
    try:
        service.require_session(owner_id).skip()
    except BattleError as e:
        raise _to_http(e)
    return _state(service, owner_id)


@router.post(
    "/{owner_id}/next", response_model=BattleStateResponse, responses=ERROR_RESPONSES
)
def acknowledge(
    owner_id: str,
    service: BattleService = Depends(get_battle_service),
) -> BattleStateResponse:
    """오답/시간초과 확인 후 다음 문제"""
    try:
        service.require_session(owner_id).acknowledge()
    except BattleError as e:
        raise _to_http(e)
    return _state(service, owner_id)


@router.post(
    "/{owner_id}/escape", response_model=BattleStateResponse, responses=ERROR_RESPONSES
)
def escape(
    owner_id: str,
    service: BattleService = Depends(get_battle_service),
) -> BattleStateResponse:
    try:
        service.require_session(owner_id).escape()
    except BattleError as e:
        raise _to_http(e)
    return _state(service, owner_id)


@router.post("/{owner_id}/leave", response_model=BattleStateResponse)
def leave(
    owner_id: str,
    service: BattleService = Depends(get_battle_service),
) -> BattleStateResponse:
    """화면 이탈. 타이머 취소, 메모리 상태 폐기."""
    service.leave(owner_id)
    return _state(service, owner_id)


# === 장비 ===


@router.get(
    "/{owner_id}/inventory",
    response_model=list[InventoryEntry],
    responses={404: {"model": ErrorResponse}},
)
def get_inventory(
    owner_id: str,
    service: BattleService = Depends(get_battle_service),
) -> list[InventoryEntry]:
    try:
        return [InventoryEntry(**row) for row in service.get_inventory(owner_id)]
    except BattleError as e:
        raise _to_http(e)


@router.post(
    "/{owner_id}/equip", response_model=LoadoutResponse, responses=ERROR_RESPONSES
)
def equip(
    owner_id: str,
    body: EquipRequest,
    service: BattleService = Depends(get_battle_service),
) -> LoadoutResponse:
    try:
        slot = service.equip(owner_id, body.instance_id)
        return LoadoutResponse(
            message=f"Equipped in {slot.value}.",
            character=_character(service, owner_id),
            details={"slot": slot.value},
        )
    except BattleError as e:
        raise _to_http(e)


@router.post(
    "/{owner_id}/unequip", response_model=LoadoutResponse, responses=ERROR_RESPONSES
)
def unequip(
    owner_id: str,
    body: UnequipRequest,
    service: BattleService = Depends(get_battle_service),
) -> LoadoutResponse:
    try:
        slot = EquipmentSlot(body.slot)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown slot: {body.slot}")
    try:
        previous = service.unequip(owner_id, slot)
        return LoadoutResponse(
            message=f"Unequipped {slot.value}." if previous else "Slot already empty.",
            character=_character(service, owner_id),
            details={"slot": slot.value, "instance_id": previous},
        )
    except BattleError as e:
        raise _to_http(e)


@router.post(
    "/{owner_id}/use-potion", response_model=LoadoutResponse, responses=ERROR_RESPONSES
)
def use_potion(
    owner_id: str,
    body: UsePotionRequest,
    service: BattleService = Depends(get_battle_service),
) -> LoadoutResponse:
    try:
        healed = service.use_potion(owner_id, body.instance_id)
        return LoadoutResponse(
            message=f"Restored {healed} HP.",
            character=_character(service, owner_id),
            details={"healed": healed},
        )
    except BattleError as e:
        raise _to_http(e)


@router.get(
    "/{owner_id}/history",
    response_model=list[SubmissionEntry],
    responses={404: {"model": ErrorResponse}},
)
def get_history(
    owner_id: str,
    service: BattleService = Depends(get_battle_service),
) -> list[SubmissionEntry]:
    """답안 제출 기록 (오래된 순)"""
    try:
        return [SubmissionEntry(**row) for row in service.get_history(owner_id)]
    except BattleError as e:
        raise _to_http(e)
