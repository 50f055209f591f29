from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from imposter_game.errors import GameError, PreconditionError, ValidationError
from imposter_game.lobby_api import LobbyApi, get_lobby_api, join_code_from_url, normalize_code
from imposter_game.models import RoundStage
from imposter_game.outcome import compute_game_outcome, role_for_player
from imposter_game import round_state
from imposter_game.schemas import (
    ChatMessageResponse, ChatRequest, CreateGameRequest, GameResponse, JoinGameRequest,
    JoinGameResponse, LobbyResponse, PlayerResponse, ReadyRequest, RoleResponse,
    RoundViewResponse, SetHostRequest, StageTokenRequest, UpdateSettingsRequest, VoteRequest,
    VoteResponse, VoteRow,
)

router = APIRouter()

STAGE_TOKENS = {
    RoundStage.VOTING.value: round_state.VOTING_START,
    RoundStage.VOTE_REVEAL.value: round_state.REVEAL_VOTES,
}


def _http_error(e: GameError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=str(e))


def _game_out(game) -> GameResponse:
    return GameResponse.model_validate(game)


def _player_out(player) -> PlayerResponse:
    return PlayerResponse.model_validate(player)


def _round_snapshot(api: LobbyApi, code: str):
    """Room, the round players still present, chat log and votes."""
    lobby = api.fetch_lobby_by_code(code)
    game = lobby.game
    if not game.started_at:
        raise PreconditionError("No round is in progress.")
    roster = round_state.present_players(
        round_state.roster_at_start(game, lobby.players), lobby.players
    )
    messages = api.fetch_chat_messages(game.code, game.round_key)
    votes = api.fetch_votes(game.code, game.round_key)
    return lobby, roster, messages, votes


# ------------------------------
# Rooms
# ------------------------------
@router.post("/games", response_model=GameResponse)
def create_game(req: CreateGameRequest, api: LobbyApi = Depends(get_lobby_api)):
    try:
        game = api.create_game_lobby(
            req.category_id,
            req.category_name,
            req.category_words,
            force_single_imposter=req.force_single_imposter,
            require_chat_clue=req.require_chat_clue,
        )
        return _game_out(game)
    except GameError as e:
        raise _http_error(e)


@router.post("/games/join", response_model=JoinGameResponse)
def join_game(req: JoinGameRequest, api: LobbyApi = Depends(get_lobby_api)):
    try:
        code = normalize_code(req.game_code) or join_code_from_url(req.join_url)
        if not code:
            raise ValidationError("Please enter a code and name.")
        game, player = api.join_game(code, req.player_name)
        return JoinGameResponse(game=_game_out(game), player=_player_out(player))
    except GameError as e:
        raise _http_error(e)


@router.get("/join")
def resolve_join_link(join: Optional[str] = None):
    """Deep link target: hands the code back so the join form can be pre-filled."""
    code = normalize_code(join)
    return {"game_code": code or None}


@router.get("/games/{code}", response_model=LobbyResponse)
def get_lobby(code: str, api: LobbyApi = Depends(get_lobby_api)):
    try:
        lobby = api.fetch_lobby_by_code(code)
        return LobbyResponse(
            game=_game_out(lobby.game),
            players=[_player_out(p) for p in lobby.players],
        )
    except GameError as e:
        raise _http_error(e)


@router.patch("/games/{code}/settings", response_model=GameResponse)
def update_settings(code: str, req: UpdateSettingsRequest, api: LobbyApi = Depends(get_lobby_api)):
    try:
        patch = req.model_dump(exclude_unset=True)
        return _game_out(api.update_game_settings(code, **patch))
    except GameError as e:
        raise _http_error(e)


@router.post("/games/{code}/host", response_model=GameResponse)
def set_host(code: str, req: SetHostRequest, api: LobbyApi = Depends(get_lobby_api)):
    try:
        return _game_out(api.set_game_host(code, req.player_id))
    except GameError as e:
        raise _http_error(e)


@router.post("/games/{code}/start", response_model=GameResponse)
def start_game(code: str, api: LobbyApi = Depends(get_lobby_api)):
    try:
        lobby = api.fetch_lobby_by_code(code)
        round_state.check_can_start(lobby.players, api.settings.MIN_PLAYERS)
        return _game_out(api.start_game(code))
    except GameError as e:
        raise _http_error(e)


@router.post("/games/{code}/reveal", response_model=GameResponse)
def reveal_game(code: str, api: LobbyApi = Depends(get_lobby_api)):
    try:
        return _game_out(api.reveal_game(code))
    except GameError as e:
        raise _http_error(e)


@router.post("/games/{code}/prune")
def prune_players(code: str, timeout_seconds: Optional[int] = None,
                  api: LobbyApi = Depends(get_lobby_api)):
    try:
        removed = api.prune_inactive_players(code, timeout_seconds)
        return {"removed": removed}
    except GameError as e:
        raise _http_error(e)


# ------------------------------
# Players
# ------------------------------
@router.post("/players/{player_id}/ready", response_model=PlayerResponse)
def set_ready(player_id: str, req: ReadyRequest, api: LobbyApi = Depends(get_lobby_api)):
    try:
        return _player_out(api.set_player_ready(player_id, req.ready))
    except GameError as e:
        raise _http_error(e)


@router.post("/players/{player_id}/heartbeat")
def heartbeat(player_id: str, api: LobbyApi = Depends(get_lobby_api)):
    try:
        api.touch_player(player_id)
        return {"status": "ok"}
    except GameError as e:
        raise _http_error(e)


@router.delete("/players/{player_id}")
def kick_player(player_id: str, api: LobbyApi = Depends(get_lobby_api)):
    try:
        api.kick_player(player_id)
        return {"status": "removed"}
    except GameError as e:
        raise _http_error(e)


@router.post("/players/{player_id}/leave")
def leave_game(player_id: str, api: LobbyApi = Depends(get_lobby_api)):
    try:
        api.leave_game(player_id)
        return {"status": "left"}
    except GameError as e:
        raise _http_error(e)


# ------------------------------
# Round: chat, stage, votes
# ------------------------------
@router.get("/games/{code}/chat", response_model=List[ChatMessageResponse])
def get_chat(code: str, round_key: Optional[str] = None, limit: Optional[int] = Query(default=None, ge=1),
             api: LobbyApi = Depends(get_lobby_api)):
    try:
        if round_key is None:
            round_key = api.fetch_lobby_by_code(code).game.round_key
        messages = api.fetch_chat_messages(code, round_key, limit)
        return [ChatMessageResponse.model_validate(m) for m in messages]
    except GameError as e:
        raise _http_error(e)


@router.post("/games/{code}/chat", response_model=ChatMessageResponse)
def send_chat(code: str, req: ChatRequest, api: LobbyApi = Depends(get_lobby_api)):
    try:
        lobby, roster, messages, _ = _round_snapshot(api, code)
        if round_state.derive_stage(lobby.game, messages) != RoundStage.DISCUSSION:
            raise PreconditionError("Discussion is over for this round.")

        if req.player_id is None:
            name = round_state.HOST_NAME
        else:
            player = next((p for p in lobby.players if p.player_id == req.player_id), None)
            if not player:
                raise ValidationError("Player not found")
            name = player.name

        msg = api.send_chat_message(lobby.game.code, lobby.game.round_key, req.player_id, name, req.text)
        return ChatMessageResponse.model_validate(msg)
    except GameError as e:
        raise _http_error(e)


@router.post("/games/{code}/stage", response_model=RoundViewResponse)
def advance_stage(code: str, req: StageTokenRequest, api: LobbyApi = Depends(get_lobby_api)):
    """Host moves the round to `voting` or `vote_reveal`."""
    try:
        token = STAGE_TOKENS.get(req.token)
        if token is None:
            raise ValidationError(f"Unknown stage: {req.token}")

        lobby, roster, messages, votes = _round_snapshot(api, code)
        stage = round_state.derive_stage(lobby.game, messages)
        if token == round_state.VOTING_START:
            round_state.check_can_move_to_voting(lobby.game, stage, roster, messages)
        else:
            seconds_left = _seconds_left(api, stage, messages, api.clock())
            round_state.check_can_reveal_votes(stage, roster, votes, seconds_left)

        api.send_system_token(lobby.game.code, lobby.game.round_key, token)
        return round_view(code, api)
    except GameError as e:
        raise _http_error(e)


@router.get("/games/{code}/votes", response_model=List[VoteRow])
def get_votes(code: str, api: LobbyApi = Depends(get_lobby_api)):
    try:
        game = api.fetch_lobby_by_code(code).game
        return [VoteRow.model_validate(v) for v in api.fetch_votes(game.code, game.round_key)]
    except GameError as e:
        raise _http_error(e)


@router.post("/games/{code}/votes/toggle", response_model=VoteResponse)
def toggle_vote(code: str, req: VoteRequest, api: LobbyApi = Depends(get_lobby_api)):
    try:
        lobby, roster, messages, _ = _round_snapshot(api, code)
        if round_state.derive_stage(lobby.game, messages) != RoundStage.VOTING:
            raise PreconditionError("Voting isn't open.")
        roster_ids = {p.player_id for p in roster}
        if req.voter_player_id not in roster_ids or req.target_player_id not in roster_ids:
            raise ValidationError("Player not found")

        cap = req.cap if req.cap is not None else round_state.max_selections(len(roster))
        result = api.toggle_vote(lobby.game.code, lobby.game.round_key,
                                 req.voter_player_id, req.target_player_id, cap)
        return VoteResponse(**result)
    except GameError as e:
        raise _http_error(e)


def _seconds_left(api: LobbyApi, stage: RoundStage, messages, now: datetime) -> Optional[int]:
    if stage != RoundStage.VOTING:
        return None
    started = round_state.find_system_timestamp(messages, round_state.VOTING_START)
    return round_state.voting_seconds_left(started, now, api.settings.VOTING_COUNTDOWN_SECONDS)


@router.get("/games/{code}/round", response_model=RoundViewResponse)
def round_view(code: str, api: LobbyApi = Depends(get_lobby_api)):
    """Everything a thin client needs to draw the round, derived fresh."""
    try:
        lobby = api.fetch_lobby_by_code(code)
        game = lobby.game
        if not game.started_at:
            return RoundViewResponse()

        roster = round_state.present_players(
            round_state.roster_at_start(game, lobby.players), lobby.players
        )
        messages = api.fetch_chat_messages(game.code, game.round_key)
        votes = api.fetch_votes(game.code, game.round_key)
        stage = round_state.derive_stage(game, messages)
        speaker = round_state.next_speaker(
            roster, game.first_speaker_player_id, round_state.non_system_messages(messages)
        )

        return RoundViewResponse(
            round_key=game.round_key,
            stage=stage.value,
            roster=[_player_out(p) for p in roster],
            first_speaker_player_id=game.first_speaker_player_id,
            next_speaker_player_id=speaker.player_id if speaker else None,
            next_speaker_name=speaker.name if speaker else None,
            vote_counts=round_state.vote_counts(votes),
            voted=sorted(round_state.voters(votes)),
            vote_cap=round_state.max_selections(len(roster)),
            seconds_left=_seconds_left(api, stage, messages, api.clock()),
        )
    except GameError as e:
        raise _http_error(e)


@router.get("/games/{code}/players/{player_id}/role", response_model=RoleResponse)
def player_role(code: str, player_id: str, api: LobbyApi = Depends(get_lobby_api)):
    try:
        lobby = api.fetch_lobby_by_code(code)
        game = lobby.game
        if not game.started_at:
            raise PreconditionError("No round is in progress.")
        roster = round_state.roster_at_start(game, lobby.players)
        if not any(p.player_id == player_id for p in roster):
            raise ValidationError("Player isn't in this round.")
        role = role_for_player(compute_game_outcome(game, roster), player_id)
        return RoleResponse(**role.to_dict())
    except GameError as e:
        raise _http_error(e)
