from datetime import datetime, timedelta

import pytest

from imposter_game.errors import CapacityError, PreconditionError
from imposter_game.models import ChatMessage, Game, Outcome, Player, RoundStage, STAGE_ORDER, Vote
from imposter_game.round_state import (
    REVEAL_VOTES, VOTING_START, check_can_move_to_voting, check_can_reveal_votes, check_can_start,
    derive_stage, find_system_timestamp, is_system_message, max_selections, next_speaker,
    non_system_messages, present_players, roster_at_start, summarize_round, vote_counts, voting_seconds_left,
)

T0 = datetime(2025, 1, 1, 12, 0, 0)


def msg(player_id, name, text, seconds=0):
    return ChatMessage(None, player_id, name, text, T0 + timedelta(seconds=seconds))


def token(text, seconds=0):
    return msg(None, "HOST", text, seconds)


@pytest.fixture
def running_game():
    return Game("ABCDEF", started_at=T0)


@pytest.fixture
def roster():
    return [Player("a", "Ana"), Player("b", "Ben"), Player("c", "Cara"), Player("d", "Dev")]


def test_system_messages_need_host_name_and_prefix():
    assert is_system_message(token(VOTING_START))
    assert is_system_message(msg(None, "host", VOTING_START))
    assert not is_system_message(msg("a", "Ana", VOTING_START))
    assert not is_system_message(msg(None, "HOST", "hello everyone"))


def test_stage_scenario_reaches_vote_reveal(running_game):
    log = [msg("a", "Ana", "round"), token(VOTING_START), msg("b", "Ben", "hmm"), token(REVEAL_VOTES)]
    assert derive_stage(running_game, log) == RoundStage.VOTE_REVEAL


def test_stage_defaults_to_discussion(running_game):
    assert derive_stage(running_game, []) == RoundStage.DISCUSSION
    assert derive_stage(running_game, [msg("a", "Ana", "hi")]) == RoundStage.DISCUSSION


def test_player_cannot_forge_stage_tokens(running_game):
    assert derive_stage(running_game, [msg("a", "Ana", VOTING_START)]) == RoundStage.DISCUSSION


def test_revealed_game_is_always_final(running_game):
    running_game.revealed_at = T0 + timedelta(minutes=5)
    assert derive_stage(running_game, []) == RoundStage.FINAL
    assert derive_stage(running_game, [token(VOTING_START)]) == RoundStage.FINAL


def test_stage_never_regresses_as_log_grows(running_game):
    log = [
        msg("a", "Ana", "one"),
        token(VOTING_START, 1),
        token(VOTING_START, 2),
        token(REVEAL_VOTES, 3),
        token(VOTING_START, 4),
        msg("b", "Ben", "late", 5),
    ]
    previous = RoundStage.DISCUSSION
    for i in range(len(log) + 1):
        stage = derive_stage(running_game, log[:i])
        assert STAGE_ORDER[stage] >= STAGE_ORDER[previous]
        previous = stage
    assert previous == RoundStage.VOTE_REVEAL


def test_find_system_timestamp_uses_last_token():
    log = [token(VOTING_START, 1), msg("a", "Ana", "x", 2), token(VOTING_START, 7)]
    assert find_system_timestamp(log, VOTING_START) == T0 + timedelta(seconds=7)
    assert find_system_timestamp(log, REVEAL_VOTES) is None


def test_non_system_messages_drop_host_chatter():
    log = [token(VOTING_START), msg(None, "HOST", "hurry up"), msg("a", "Ana", "hi")]
    assert [m.player_id for m in non_system_messages(log)] == ["a"]


def test_next_speaker_starts_at_first_speaker(roster):
    assert next_speaker(roster, "c", []).player_id == "c"


def test_next_speaker_advances_when_current_speaker_talks(roster):
    log = [msg("c", "Cara", "clue"), msg("a", "Ana", "out of turn"), msg("d", "Dev", "clue")]
    # c -> d on Cara; Ana is ignored; d -> a on Dev
    assert next_speaker(roster, "c", log).player_id == "a"


def test_next_speaker_wraps_around(roster):
    log = [msg(p, "", "clue") for p in ["b", "c", "d", "a"]]
    assert next_speaker(roster, "b", log).player_id == "b"


def test_next_speaker_falls_back_when_first_speaker_left(roster):
    assert next_speaker(roster, "gone", []).player_id == "a"
    assert next_speaker(roster, None, [msg("a", "Ana", "x")]).player_id == "b"


def test_next_speaker_repeat_message_only_counts_while_holding_the_turn(roster):
    log = [msg("a", "Ana", "one"), msg("a", "Ana", "again")]
    assert next_speaker(roster, "a", log).player_id == "b"
    log = [msg("a", "Ana", "one"), msg("b", "Ben", "two"), msg("b", "Ben", "three")]
    assert next_speaker(roster, "a", log).player_id == "c"


def test_next_speaker_single_player_keeps_the_turn():
    solo = [Player("a", "Ana")]
    assert next_speaker(solo, "a", [msg("a", "Ana", "x"), msg("a", "Ana", "y")]).player_id == "a"


def test_next_speaker_empty_roster():
    assert next_speaker([], "a", []) is None


def test_vote_counts_groups_by_target():
    votes = [Vote("a", "b"), Vote("c", "b"), Vote("b", "a"), Vote("a", "d")]
    assert vote_counts(votes) == {"b": 2, "a": 1, "d": 1}


@pytest.mark.parametrize("count,cap", [(0, 1), (1, 1), (3, 1), (4, 2), (7, 3), (10, 5)])
def test_max_selections(count, cap):
    assert max_selections(count) == cap


def test_voting_seconds_left():
    assert voting_seconds_left(None, T0) is None
    assert voting_seconds_left(T0, T0 + timedelta(seconds=12)) == 18
    assert voting_seconds_left(T0, T0 + timedelta(seconds=45)) == 0


def test_check_can_start_needs_three_ready(roster):
    roster[0].ready_for_next_round = False
    roster[1].ready_for_next_round = False
    with pytest.raises(CapacityError):
        check_can_start(roster)
    roster[1].ready_for_next_round = True
    check_can_start(roster)


def test_move_to_voting_requires_chat_when_flag_set(running_game, roster):
    running_game.require_chat_clue = True
    log = [msg(p.player_id, p.name, "clue") for p in roster[:3]]
    with pytest.raises(PreconditionError):
        check_can_move_to_voting(running_game, RoundStage.DISCUSSION, roster, log)

    log.append(msg("d", "Dev", "clue"))
    check_can_move_to_voting(running_game, RoundStage.DISCUSSION, roster, log)


def test_move_to_voting_only_from_discussion(running_game, roster):
    with pytest.raises(PreconditionError):
        check_can_move_to_voting(running_game, RoundStage.VOTING, roster, [])
    with pytest.raises(PreconditionError):
        check_can_move_to_voting(Game("ABCDEF"), RoundStage.DISCUSSION, roster, [])


def test_reveal_votes_waits_for_votes_or_countdown(roster):
    votes = [Vote("a", "b")]
    with pytest.raises(PreconditionError):
        check_can_reveal_votes(RoundStage.VOTING, roster, votes, 12)

    check_can_reveal_votes(RoundStage.VOTING, roster, votes, 0)

    everyone = [Vote(p.player_id, "a") for p in roster]
    check_can_reveal_votes(RoundStage.VOTING, roster, everyone, 25)

    with pytest.raises(PreconditionError):
        check_can_reveal_votes(RoundStage.DISCUSSION, roster, everyone, 0)


def test_summarize_round_caught(roster):
    outcome = Outcome("Pizza", ["b"], "a")
    votes = [Vote("a", "b"), Vote("c", "b"), Vote("d", "a"), Vote("b", "a"), Vote("a", "c")]
    summary = summarize_round(outcome, roster, votes)

    assert summary.top_voted_ids == ["a", "b"]
    assert summary.imposter_caught is True
    assert summary.imposter_names == ["Ben"]
    assert summary.tally == {"a": 2, "b": 2, "c": 1, "d": 0}


def test_summarize_round_escaped_without_votes(roster):
    summary = summarize_round(Outcome("Pizza", ["b"], "a"), roster, [])
    assert summary.top_voted_ids == []
    assert summary.imposter_caught is False


def test_roster_at_start_reads_the_stamped_roster():
    stamped = [{"player_id": "a", "name": "Ana"}, {"player_id": "c", "name": "Cara"}]
    game = Game("ABCDEF", started_at=T0, round_roster=stamped)
    # Ben readied up after the start and Dev joined late; neither is in the round
    live = [
        Player("a", "Ana"),
        Player("b", "Ben", ready_for_next_round=True),
        Player("c", "Cara", ready_for_next_round=False),
        Player("d", "Dev", joined_at=T0 + timedelta(seconds=5)),
    ]
    roster = roster_at_start(game, live)
    assert [p.player_id for p in roster] == ["a", "c"]
    assert roster[0] is live[0]


def test_roster_at_start_keeps_players_who_left():
    game = Game("ABCDEF", started_at=T0,
                round_roster=[{"player_id": "a", "name": "Ana"}, {"player_id": "b", "name": "Ben"}])
    roster = roster_at_start(game, [Player("a", "Ana")])
    assert [(p.player_id, p.name) for p in roster] == [("a", "Ana"), ("b", "Ben")]
    assert [p.player_id for p in present_players(roster, [Player("a", "Ana")])] == ["a"]


def test_roster_at_start_empty_before_first_round():
    assert roster_at_start(Game("ABCDEF"), [Player("a", "Ana")]) == []
