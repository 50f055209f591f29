"""
Deterministic round outcome.

Every device computes the word, the imposters and the first speaker from the
same inputs (room code, round key, roster, word list) instead of reading a
stored decision. The string hash below is the only source of randomness, so it
has to match bit for bit on every client, including JavaScript ones: it walks
UTF-16 code units and wraps to a signed 32-bit int after every step.
"""

from typing import List, Optional, Sequence
from imposter_game.models import Game, Outcome, Player, PlayerRole

NO_WORD = "???"


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def hash_string(text: str) -> int:
    h = 0
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = _to_int32(h * 31 + unit)
    return abs(h)


def round_seed(code: str, round_key: Optional[str]) -> str:
    # Same room, new started_at -> new seed
    return f"{code}|{round_key}" if round_key else code


def pick_word(seed: str, words: Sequence[str]) -> str:
    if not words:
        return NO_WORD
    return words[hash_string(seed) % len(words)]


def _round_half_up(value: float) -> int:
    # Matches Math.round for the positive values used here
    return int(value + 0.5)


def imposter_target(n: int, min_imposters: int = 1, max_imposters: Optional[int] = None) -> int:
    """How many imposters a roster of n players gets."""
    if n < 2:
        return 0

    target = _round_half_up(n * 0.25)
    if target < min_imposters:
        target = min_imposters

    hard_max = max_imposters if max_imposters is not None else max(1, n // 3)
    if target > hard_max:
        target = hard_max

    # Always keep at least one innocent
    if target >= n:
        target = n - 1
    return max(target, 0)


def rank_roster(seed: str, roster: Sequence[Player]) -> List[Player]:
    """Roster sorted by hash(seed|name); player id breaks hash ties."""
    return sorted(
        roster,
        key=lambda p: (hash_string(f"{seed}|{p.name or ''}"), str(p.player_id)),
    )


def compute_outcome(code: str, round_key: Optional[str], roster: Sequence[Player],
                    words: Sequence[str], min_imposters: int = 1,
                    max_imposters: Optional[int] = None) -> Outcome:
    seed = round_seed(code, round_key)
    word = pick_word(seed, words)

    roster = list(roster or [])
    target = imposter_target(len(roster), min_imposters, max_imposters)
    ranked = rank_roster(seed, roster)

    imposters = [p.player_id for p in ranked[:target]]
    # Lowest-ranked player outside the imposter slice opens the discussion
    first_speaker = ranked[target].player_id if target < len(ranked) else None

    return Outcome(word=word, imposters=imposters, first_speaker_id=first_speaker)


def max_imposters_for(game: Game) -> Optional[int]:
    return 1 if game.force_single_imposter else None


def compute_game_outcome(game: Game, roster: Sequence[Player]) -> Outcome:
    """Outcome for the game's current round, using its own settings."""
    return compute_outcome(
        code=game.code,
        round_key=game.round_key,
        roster=roster,
        words=game.category_words,
        min_imposters=1,
        max_imposters=max_imposters_for(game),
    )


def role_for_player(outcome: Outcome, player_id: Optional[str]) -> PlayerRole:
    is_imposter = outcome.is_imposter(player_id)
    return PlayerRole(is_imposter=is_imposter, word=None if is_imposter else outcome.word)
