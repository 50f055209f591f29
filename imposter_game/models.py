# imposter_game/models.py
from datetime import datetime
from typing import Dict, List, Optional
from enum import Enum


class RoundStage(str, Enum):
    DISCUSSION = "discussion"
    VOTING = "voting"
    VOTE_REVEAL = "vote_reveal"
    FINAL = "final"


# Position of each stage; a stage never moves to a lower one
STAGE_ORDER = {
    RoundStage.DISCUSSION: 0,
    RoundStage.VOTING: 1,
    RoundStage.VOTE_REVEAL: 2,
    RoundStage.FINAL: 3,
}


class DevicePhase(str, Enum):
    SETUP = "setup"
    LOBBY = "lobby"
    ROLE = "role"
    ROUND = "round"
    FINAL = "final"
    REMOVED = "removed"
    CLOSED = "closed"


def round_key_for(started_at) -> Optional[str]:
    """The round key is the ISO text of the game's started_at."""
    if started_at is None:
        return None
    if isinstance(started_at, datetime):
        return started_at.isoformat()
    return str(started_at)


class Player:
    """
    In-memory snapshot of a player row.
    """
    def __init__(self, player_id: str, name: str, ready_for_next_round: bool = True,
                 last_seen_at: Optional[datetime] = None, joined_at: Optional[datetime] = None):
        self.player_id = player_id
        self.name = name
        self.ready_for_next_round = ready_for_next_round
        self.last_seen_at = last_seen_at
        self.joined_at = joined_at

    def __repr__(self):
        return f"Player({self.player_id!r}, {self.name!r})"

    def to_dict(self):
        return {
            "player_id": self.player_id,
            "name": self.name,
            "ready_for_next_round": self.ready_for_next_round,
            "last_seen_at": self.last_seen_at,
            "joined_at": self.joined_at,
        }


class Game:
    """
    In-memory snapshot of a room row.
    """
    def __init__(self, code: str, category_id: Optional[str] = None,
                 category_name: Optional[str] = None, category_words: Optional[List[str]] = None,
                 force_single_imposter: bool = False, require_chat_clue: bool = False,
                 host_player_id: Optional[str] = None, started_at: Optional[datetime] = None,
                 revealed_at: Optional[datetime] = None,
                 first_speaker_player_id: Optional[str] = None,
                 round_roster: Optional[List[Dict[str, str]]] = None):
        self.code = code
        self.category_id = category_id
        self.category_name = category_name
        self.category_words: List[str] = list(category_words or [])
        self.force_single_imposter = force_single_imposter
        self.require_chat_clue = require_chat_clue
        self.host_player_id = host_player_id
        self.started_at = started_at
        self.revealed_at = revealed_at
        self.first_speaker_player_id = first_speaker_player_id
        self.round_roster: List[Dict[str, str]] = list(round_roster or [])

    @property
    def round_key(self) -> Optional[str]:
        return round_key_for(self.started_at)

    def to_dict(self):
        return {
            "code": self.code,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "category_words": self.category_words,
            "force_single_imposter": self.force_single_imposter,
            "require_chat_clue": self.require_chat_clue,
            "host_player_id": self.host_player_id,
            "started_at": self.started_at,
            "revealed_at": self.revealed_at,
            "round_key": self.round_key,
            "first_speaker_player_id": self.first_speaker_player_id,
            "round_roster": self.round_roster,
        }


class Lobby:
    """A room plus its players in join order."""
    def __init__(self, game: Game, players: List[Player]):
        self.game = game
        self.players = players


class ChatMessage:
    def __init__(self, message_id: Optional[int], player_id: Optional[str], name: str,
                 message: str, created_at: Optional[datetime] = None,
                 round_key: Optional[str] = None):
        self.id = message_id
        self.player_id = player_id
        self.name = name
        self.message = message
        self.created_at = created_at
        self.round_key = round_key

    def to_dict(self):
        return {
            "id": self.id,
            "player_id": self.player_id,
            "name": self.name,
            "message": self.message,
            "created_at": self.created_at,
        }


class Vote:
    def __init__(self, voter_player_id: str, target_player_id: str,
                 created_at: Optional[datetime] = None):
        self.voter_player_id = voter_player_id
        self.target_player_id = target_player_id
        self.created_at = created_at

    def to_dict(self):
        return {
            "voter_player_id": self.voter_player_id,
            "target_player_id": self.target_player_id,
        }


class Outcome:
    """
    What every device derives for a round: the word, the imposters
    and who opens the discussion. Never stored.
    """
    def __init__(self, word: str, imposters: List[str], first_speaker_id: Optional[str]):
        self.word = word
        self.imposters = imposters
        self.first_speaker_id = first_speaker_id

    def is_imposter(self, player_id: Optional[str]) -> bool:
        return player_id in self.imposters

    def __eq__(self, other):
        if not isinstance(other, Outcome):
            return NotImplemented
        return (self.word, self.imposters, self.first_speaker_id) == \
            (other.word, other.imposters, other.first_speaker_id)

    def to_dict(self):
        return {
            "word": self.word,
            "imposters": list(self.imposters),
            "first_speaker_id": self.first_speaker_id,
        }


class PlayerRole:
    """One device's view of the outcome. Imposters don't get the word."""
    def __init__(self, is_imposter: bool, word: Optional[str]):
        self.is_imposter = is_imposter
        self.word = word

    def to_dict(self):
        return {"is_imposter": self.is_imposter, "word": self.word}


class RoundSummary:
    def __init__(self, word: str, imposter_ids: List[str], imposter_names: List[str],
                 top_voted_ids: List[str], imposter_caught: bool, tally: Dict[str, int]):
        self.word = word
        self.imposter_ids = imposter_ids
        self.imposter_names = imposter_names
        self.top_voted_ids = top_voted_ids
        self.imposter_caught = imposter_caught
        self.tally = tally

    def to_dict(self):
        return {
            "word": self.word,
            "imposter_ids": self.imposter_ids,
            "imposter_names": self.imposter_names,
            "top_voted_ids": self.top_voted_ids,
            "imposter_caught": self.imposter_caught,
            "tally": self.tally,
        }
