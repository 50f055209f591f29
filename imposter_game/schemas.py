from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class GameResponse(BaseModel):
    code: str
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    category_words: List[str] = []
    force_single_imposter: bool = False
    require_chat_clue: bool = False
    host_player_id: Optional[str] = None
    started_at: Optional[datetime] = None
    revealed_at: Optional[datetime] = None
    round_key: Optional[str] = None
    first_speaker_player_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PlayerResponse(BaseModel):
    player_id: str
    name: str
    ready_for_next_round: bool
    last_seen_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LobbyResponse(BaseModel):
    game: GameResponse
    players: List[PlayerResponse]


class CreateGameRequest(BaseModel):
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    category_words: List[str] = Field(default_factory=list)
    force_single_imposter: bool = False
    require_chat_clue: bool = False


class JoinGameRequest(BaseModel):
    game_code: Optional[str] = None
    player_name: str
    join_url: Optional[str] = Field(default=None, description="Deep link carrying ?join=CODE")


class JoinGameResponse(BaseModel):
    game: GameResponse
    player: PlayerResponse


class UpdateSettingsRequest(BaseModel):
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    category_words: Optional[List[str]] = None
    force_single_imposter: Optional[bool] = None
    require_chat_clue: Optional[bool] = None


class SetHostRequest(BaseModel):
    player_id: Optional[str] = None


class ReadyRequest(BaseModel):
    ready: bool


class ChatRequest(BaseModel):
    player_id: Optional[str] = None
    text: str


class ChatMessageResponse(BaseModel):
    id: int
    player_id: Optional[str] = None
    name: str
    message: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class StageTokenRequest(BaseModel):
    token: str


class VoteRequest(BaseModel):
    voter_player_id: str
    target_player_id: str
    cap: Optional[int] = Field(default=None, description="Defaults to half the round's players")


class VoteResponse(BaseModel):
    selected: bool


class VoteRow(BaseModel):
    voter_player_id: str
    target_player_id: str

    model_config = ConfigDict(from_attributes=True)


class RoleResponse(BaseModel):
    is_imposter: bool
    word: Optional[str] = None


class RoundViewResponse(BaseModel):
    round_key: Optional[str] = None
    stage: Optional[str] = None
    roster: List[PlayerResponse] = []
    first_speaker_player_id: Optional[str] = None
    next_speaker_player_id: Optional[str] = None
    next_speaker_name: Optional[str] = None
    vote_counts: Dict[str, int] = {}
    voted: List[str] = []
    vote_cap: int = 1
    seconds_left: Optional[int] = None
