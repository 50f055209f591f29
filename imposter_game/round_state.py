"""
Round state projections.

Nothing here is stored. Stage, speaking turn, tallies and the round summary
are recomputed from a full snapshot of the room, its chat log and its votes on
every poll, so a missed or out-of-order poll fixes itself on the next one.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set
from imposter_game.errors import CapacityError, PreconditionError
from imposter_game.models import (
    STAGE_ORDER, ChatMessage, Game, Outcome, Player, RoundStage, RoundSummary, Vote,
)

HOST_NAME = "HOST"
SYSTEM_PREFIX = "__SYS:"
VOTING_START = "__SYS:VOTING_START__"
REVEAL_VOTES = "__SYS:REVEAL_VOTES__"

TOKEN_STAGES = {
    VOTING_START: RoundStage.VOTING,
    REVEAL_VOTES: RoundStage.VOTE_REVEAL,
}


def is_host_message(msg: ChatMessage) -> bool:
    return (msg.name or "").upper() == HOST_NAME


def is_system_message(msg: ChatMessage) -> bool:
    return is_host_message(msg) and isinstance(msg.message, str) \
        and msg.message.startswith(SYSTEM_PREFIX)


def derive_stage(game: Optional[Game], messages: Iterable[ChatMessage]) -> RoundStage:
    if game is not None and game.revealed_at:
        return RoundStage.FINAL

    stage = RoundStage.DISCUSSION
    for msg in messages:
        if not is_system_message(msg):
            continue
        token_stage = TOKEN_STAGES.get(msg.message)
        if token_stage and STAGE_ORDER[token_stage] > STAGE_ORDER[stage]:
            stage = token_stage
    return stage


def find_system_timestamp(messages: Iterable[ChatMessage], token: str) -> Optional[datetime]:
    """Timestamp of the last system event carrying this token."""
    ts = None
    for msg in messages:
        if is_system_message(msg) and msg.message == token:
            ts = msg.created_at
    return ts


def non_system_messages(messages: Iterable[ChatMessage]) -> List[ChatMessage]:
    """Player-authored chat only: no stage tokens, nothing sent as HOST."""
    return [m for m in messages if not is_system_message(m) and not is_host_message(m)]


def next_speaker(roster: Sequence[Player], first_speaker_id: Optional[str],
                 messages: Iterable[ChatMessage]) -> Optional[Player]:
    """
    Who speaks next.

    The pointer starts at the first speaker (or the first roster entry if that
    player is gone) and moves one seat every time the player it points at
    sends a message.
    """
    order = [p.player_id for p in roster]
    if not order:
        return None

    idx = order.index(first_speaker_id) if first_speaker_id in order else 0
    for msg in messages:
        if not msg.player_id:
            continue
        if msg.player_id == order[idx]:
            idx = (idx + 1) % len(order)

    return roster[idx]


def roster_at_start(game: Game, players: Sequence[Player]) -> List[Player]:
    """
    The round roster stamped by start_game. Live rows are used where the
    player is still around; anyone who left keeps their stamped name so the
    outcome doesn't move.
    """
    if not game.started_at:
        return []
    live = {p.player_id: p for p in players}
    return [
        live.get(entry["player_id"]) or Player(entry["player_id"], entry["name"])
        for entry in game.round_roster
    ]


def present_players(roster: Sequence[Player], players: Sequence[Player]) -> List[Player]:
    """Roster members that still have a player row, in roster order."""
    present = {p.player_id for p in players}
    return [p for p in roster if p.player_id in present]


def vote_counts(votes: Iterable[Vote]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for vote in votes:
        counts[vote.target_player_id] = counts.get(vote.target_player_id, 0) + 1
    return counts


def voters(votes: Iterable[Vote]) -> Set[str]:
    return {v.voter_player_id for v in votes}


def votes_by_voter(votes: Iterable[Vote], voter_id: Optional[str]) -> List[str]:
    return [v.target_player_id for v in votes if v.voter_player_id == voter_id]


def chatters(messages: Iterable[ChatMessage]) -> Set[str]:
    return {m.player_id for m in messages if m.player_id}


def max_selections(player_count: int) -> int:
    """Ballot cap: up to half the players, at least one."""
    return max(1, player_count // 2)


def voting_seconds_left(voting_started_at: Optional[datetime], now: datetime,
                        countdown: int = 30) -> Optional[int]:
    if voting_started_at is None:
        return None
    elapsed = int((now - voting_started_at).total_seconds())
    return max(0, countdown - elapsed)


# ------------------------------
# Guard rails (advisory, checked by the device asking for the move)
# ------------------------------
def check_can_start(players: Sequence[Player], min_players: int = 3):
    ready = [p for p in players if p.ready_for_next_round]
    if len(ready) < min_players:
        raise CapacityError(f"Need at least {min_players} ready players to start a round.")


def check_can_move_to_voting(game: Game, stage: RoundStage, roster: Sequence[Player],
                             messages: Iterable[ChatMessage]):
    if not game.started_at:
        raise PreconditionError("No round is in progress.")
    if stage != RoundStage.DISCUSSION:
        raise PreconditionError("Voting can only start from the discussion stage.")
    if game.require_chat_clue:
        sent = chatters(non_system_messages(messages))
        if not roster or not all(p.player_id in sent for p in roster):
            raise PreconditionError(
                "Chat is required: everyone must send at least one message before voting."
            )


def check_can_reveal_votes(stage: RoundStage, roster: Sequence[Player], votes: Iterable[Vote],
                           seconds_left: Optional[int]):
    if stage != RoundStage.VOTING:
        raise PreconditionError("Votes can only be revealed during voting.")
    voted = voters(votes)
    all_voted = bool(roster) and all(p.player_id in voted for p in roster)
    if not all_voted and (seconds_left is None or seconds_left > 0):
        raise PreconditionError("Waiting for votes (or countdown to end).")


def summarize_round(outcome: Outcome, roster: Sequence[Player],
                    votes: Iterable[Vote]) -> RoundSummary:
    """Caught or escaped: caught when any top-voted player is an imposter."""
    tally = vote_counts(votes)
    universe = [p.player_id for p in roster]
    top = max((tally.get(pid, 0) for pid in universe), default=0)
    top_voted = [pid for pid in universe if top > 0 and tally.get(pid, 0) == top]

    names = {p.player_id: p.name for p in roster}
    return RoundSummary(
        word=outcome.word,
        imposter_ids=list(outcome.imposters),
        imposter_names=[names.get(pid, "?") for pid in outcome.imposters],
        top_voted_ids=top_voted,
        imposter_caught=bool(outcome.imposters) and any(pid in outcome.imposters for pid in top_voted),
        tally={pid: tally.get(pid, 0) for pid in universe},
    )
