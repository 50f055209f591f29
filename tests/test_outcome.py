import pytest

from imposter_game.models import Game, Player
from imposter_game.outcome import (
    NO_WORD, compute_game_outcome, compute_outcome, hash_string, imposter_target,
    pick_word, rank_roster, role_for_player, round_seed,
)

NAMES = ["Ana", "Ben", "Cara", "Dev", "Eli", "Fay", "Gus", "Hal", "Ivy", "Jo", "Kim", "Lu"]


def test_hash_matches_java_style_string_hash():
    assert hash_string("") == 0
    assert hash_string("a") == 97
    assert hash_string("ab") == 97 * 31 + 98
    assert hash_string("hello") == 99162322


def test_hash_wraps_to_32_bits_then_takes_abs():
    # Its 32-bit hash is exactly -2**31
    assert hash_string("polygenelubricants") == 2 ** 31


def test_hash_walks_utf16_code_units():
    # Surrogate pair 0xD83D 0xDE00
    assert hash_string("\U0001F600") == 0xD83D * 31 + 0xDE00


def test_round_seed():
    assert round_seed("AB12CD", "2025-01-01T12:00:00") == "AB12CD|2025-01-01T12:00:00"
    assert round_seed("AB12CD", None) == "AB12CD"


def test_pick_word_empty_list_returns_sentinel():
    assert pick_word("seed", []) == NO_WORD


def test_pick_word_is_stable_across_calls():
    # hash("b") == 98, an even bucket
    words = ["Pizza", "Burger"]
    results = {compute_outcome("b", None, [], words).word for _ in range(100)}
    assert results == {"Pizza"}


@pytest.mark.parametrize("n,expected", [
    (0, 0), (1, 0), (2, 1), (3, 1), (4, 1), (5, 1), (6, 2), (8, 2), (10, 3), (12, 3),
])
def test_imposter_target_default_bounds(n, expected):
    assert imposter_target(n) == expected


def test_imposter_target_respects_explicit_max_and_keeps_an_innocent():
    assert imposter_target(12, max_imposters=1) == 1
    assert imposter_target(2, min_imposters=2, max_imposters=5) == 1
    assert imposter_target(3, min_imposters=3) == 1


@pytest.mark.parametrize("n", range(0, 13))
@pytest.mark.parametrize("max_imposters", [None, 1, 2, 20])
def test_roster_floor(n, max_imposters, make_roster):
    roster = make_roster(NAMES[:n])
    outcome = compute_outcome("ROOM42", "k", roster, ["x"], 1, max_imposters)

    if n < 2:
        assert outcome.imposters == []
        return
    cap = max_imposters if max_imposters is not None else max(1, n // 3)
    assert 1 <= len(outcome.imposters) <= min(cap, n - 1)
    assert len(outcome.imposters) < n


def test_outcome_is_deterministic(make_roster):
    roster = make_roster(NAMES[:7])
    first = compute_outcome("QWERTY", "2025-01-01T12:00:00.123000", roster, ["a", "b", "c"])
    for _ in range(50):
        again = compute_outcome("QWERTY", "2025-01-01T12:00:00.123000", list(roster), ["a", "b", "c"])
        assert again == first


def test_new_round_key_reshuffles_outcome(make_roster):
    roster = make_roster(NAMES)
    keys = [f"2025-01-01T12:00:{s:02d}" for s in range(20)]
    imposter_sets = {tuple(compute_outcome("QWERTY", k, roster, NAMES).imposters) for k in keys}
    assert len(imposter_sets) > 1


def test_five_player_scenario(make_roster):
    roster = make_roster(["Ana", "Ben", "Cara", "Dev", "Eli"])
    started_at = "2025-03-01T20:15:00.500000"
    outcome = compute_outcome("AB12CD", started_at, roster, ["Pizza"])

    assert len(outcome.imposters) == 1
    lowest = min(roster, key=lambda p: hash_string(f"AB12CD|{started_at}|{p.name}"))
    assert outcome.imposters == [lowest.player_id]


def test_first_speaker_is_lowest_ranked_innocent(make_roster):
    roster = make_roster(NAMES[:9])
    outcome = compute_outcome("ZZZZZZ", "r1", roster, ["w"])
    ranked = rank_roster("ZZZZZZ|r1", roster)

    assert outcome.first_speaker_id == ranked[len(outcome.imposters)].player_id
    assert outcome.first_speaker_id not in outcome.imposters


def test_first_speaker_edge_rosters(make_roster):
    assert compute_outcome("A", "r", [], ["w"]).first_speaker_id is None
    solo = make_roster(["Ana"])
    assert compute_outcome("A", "r", solo, ["w"]).first_speaker_id == "p0"


def test_duplicate_names_rank_by_player_id():
    roster = [Player("zz", "Sam"), Player("aa", "Sam"), Player("mm", "Sam")]
    outcome = compute_outcome("ROOM", "r", roster, ["w"])
    assert outcome.imposters == ["aa"]
    assert outcome.first_speaker_id == "mm"
    # Roster order doesn't matter
    assert compute_outcome("ROOM", "r", list(reversed(roster)), ["w"]) == outcome


def test_role_for_player_hides_word_from_imposters(make_roster):
    roster = make_roster(NAMES[:5])
    outcome = compute_outcome("ROLES1", "r", roster, ["Pizza"])
    imposter = outcome.imposters[0]
    innocent = next(p.player_id for p in roster if p.player_id != imposter)

    assert role_for_player(outcome, imposter).to_dict() == {"is_imposter": True, "word": None}
    assert role_for_player(outcome, innocent).to_dict() == {"is_imposter": False, "word": "Pizza"}


def test_game_outcome_uses_force_single_imposter(make_roster):
    roster = make_roster(NAMES)
    game = Game("ABCDEF", category_words=["w"], started_at="2025-01-01T00:00:00")
    assert len(compute_game_outcome(game, roster).imposters) == 3
    game.force_single_imposter = True
    assert len(compute_game_outcome(game, roster).imposters) == 1
