"""
Per-device round synchronization.

Each device (the host's phone, every joiner, a shared display screen) runs its
own RoundSyncController. No device is authoritative: every tick re-reads the
room, its players, the round's chat log and votes, and re-derives stage, turn
and tallies from scratch. Transitions are observed (started_at / revealed_at
changing, our player row disappearing), never pushed.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from imposter_game.config import Settings, settings as default_settings
from imposter_game.errors import GameError, PreconditionError, ValidationError
from imposter_game.lobby_api import LobbyApi, build_join_url, join_code_from_url, normalize_code
from imposter_game.models import (
    ChatMessage, DevicePhase, Game, Outcome, Player, PlayerRole, RoundStage, RoundSummary, Vote,
)
from imposter_game.outcome import compute_game_outcome, role_for_player
from imposter_game import round_state
from imposter_game.round_state import HOST_NAME, REVEAL_VOTES, VOTING_START

TERMINAL_PHASES = (DevicePhase.REMOVED, DevicePhase.CLOSED)
IN_ROUND_PHASES = (DevicePhase.ROLE, DevicePhase.ROUND)


class RoundSyncController:
    def __init__(self, api: LobbyApi, code: Optional[str] = None, player_id: Optional[str] = None,
                 settings: Settings = default_settings, clock: Optional[Callable[[], datetime]] = None):
        self.api = api
        self.settings = settings
        self.clock = clock or api.clock

        self.code: Optional[str] = normalize_code(code) or None
        # None means a shared display screen that follows rounds without playing
        self.player_id = player_id
        self.phase = DevicePhase.LOBBY if self.code else DevicePhase.SETUP

        self.game: Optional[Game] = None
        self.players: List[Player] = []

        # Locked at round start
        self.roster: List[Player] = []
        self.outcome: Optional[Outcome] = None

        self.messages: List[ChatMessage] = []
        self.votes: List[Vote] = []

        self.started_at_seen: Optional[datetime] = None
        self.revealed_at_seen: Optional[datetime] = None
        self._loaded = False

        self.error = ""
        self._last_heartbeat: Optional[datetime] = None
        self._last_prune: Optional[datetime] = None

    # ------------------------------
    # Derived state (recomputed on every access)
    # ------------------------------
    @property
    def round_key(self) -> Optional[str]:
        return self.game.round_key if self.game else None

    @property
    def me(self) -> Optional[Player]:
        return next((p for p in self.players if p.player_id == self.player_id), None)

    @property
    def is_display(self) -> bool:
        return self.player_id is None

    @property
    def is_host(self) -> bool:
        if self.is_display:
            return True
        return bool(self.game) and self.game.host_player_id == self.player_id

    @property
    def round_players(self) -> List[Player]:
        """Locked roster minus anyone who has since left, in join order."""
        return round_state.present_players(self.roster, self.players)

    @property
    def in_round(self) -> bool:
        return self.is_display or any(p.player_id == self.player_id for p in self.roster)

    @property
    def stage(self) -> Optional[RoundStage]:
        if not self.game or not self.outcome:
            return None
        return round_state.derive_stage(self.game, self.messages)

    @property
    def my_role(self) -> Optional[PlayerRole]:
        if not self.outcome or self.is_display or not self.in_round:
            return None
        return role_for_player(self.outcome, self.player_id)

    @property
    def next_speaker(self) -> Optional[Player]:
        if not self.outcome:
            return None
        first = self.game.first_speaker_player_id or self.outcome.first_speaker_id
        return round_state.next_speaker(
            self.round_players, first, round_state.non_system_messages(self.messages)
        )

    @property
    def vote_counts(self) -> Dict[str, int]:
        return round_state.vote_counts(self.votes)

    @property
    def my_vote_targets(self) -> List[str]:
        return round_state.votes_by_voter(self.votes, self.player_id)

    @property
    def vote_cap(self) -> int:
        return round_state.max_selections(len(self.round_players))

    @property
    def seconds_left(self) -> Optional[int]:
        if self.stage != RoundStage.VOTING:
            return None
        started = round_state.find_system_timestamp(self.messages, VOTING_START)
        return round_state.voting_seconds_left(
            started, self.clock(), self.settings.VOTING_COUNTDOWN_SECONDS
        )

    @property
    def summary(self) -> Optional[RoundSummary]:
        if not self.outcome or self.stage not in (RoundStage.VOTE_REVEAL, RoundStage.FINAL):
            return None
        return round_state.summarize_round(self.outcome, self.roster, self.votes)

    def join_url(self, origin: str) -> Optional[str]:
        return build_join_url(origin, self.code) if self.code else None

    # ------------------------------
    # Polling
    # ------------------------------
    def tick(self) -> bool:
        """
        One poll. Store failures are printed and the tick is skipped;
        the next tick simply tries again.
        """
        if not self.code or self.phase in TERMINAL_PHASES:
            return False
        try:
            lobby = self.api.fetch_lobby_by_code(self.code)
            self._apply_lobby(lobby.game, lobby.players)
            if self.outcome and self.phase not in TERMINAL_PHASES:
                self._refresh_round_data()
        except GameError as e:
            print(f"⚠️ Poll for game {self.code} skipped: {e}")
            return False
        return True

    def _apply_lobby(self, game: Game, players: List[Player]):
        self.game = game
        self.players = players

        if not self._loaded:
            # Whatever round is already running when we arrive isn't ours
            self._loaded = True
            self.started_at_seen = game.started_at
            self.revealed_at_seen = game.revealed_at

        if self.player_id and not any(p.player_id == self.player_id for p in players):
            print(f"🔴 Player {self.player_id} is no longer in game {self.code}")
            self.phase = DevicePhase.REMOVED
            return

        if game.started_at and game.started_at != self.started_at_seen:
            self.started_at_seen = game.started_at
            self._begin_round(game, players)

        if game.revealed_at and game.revealed_at != self.revealed_at_seen:
            self.revealed_at_seen = game.revealed_at
            if self.phase in IN_ROUND_PHASES:
                self.phase = DevicePhase.FINAL

    def _begin_round(self, game: Game, players: List[Player]):
        # Players who join or ready up after the start sit the round out
        self.roster = round_state.roster_at_start(game, players)
        self.outcome = compute_game_outcome(game, self.roster)
        self.messages = []
        self.votes = []

        if self.in_round:
            self.phase = DevicePhase.ROLE
            print(f"✅ Round {game.round_key} started in game {game.code} "
                  f"({len(self.roster)} players)")
        else:
            self.phase = DevicePhase.LOBBY
            print(f"⚠️ Round {game.round_key} started without us, waiting for the next one")

    def _refresh_round_data(self):
        key = self.round_key
        self.messages = self.api.fetch_chat_messages(self.code, key, self.settings.CHAT_FETCH_LIMIT)
        self.votes = self.api.fetch_votes(self.code, key)

    def _due(self, last: Optional[datetime], interval: float) -> bool:
        return last is None or self.clock() - last >= timedelta(seconds=interval)

    def maintain(self):
        """Heartbeat for our player; stale-player sweep when we're host."""
        if not self.code or self.phase in TERMINAL_PHASES:
            return
        try:
            if self.player_id and self._due(self._last_heartbeat, self.settings.HEARTBEAT_INTERVAL_SECONDS):
                self._last_heartbeat = self.clock()
                self.api.touch_player(self.player_id)

            if self.is_host and self.phase == DevicePhase.LOBBY and \
                    self._due(self._last_prune, self.settings.PRUNE_INTERVAL_SECONDS):
                self._last_prune = self.clock()
                self.api.prune_inactive_players(self.code, self.settings.PRUNE_TIMEOUT_SECONDS)
        except GameError as e:
            print(f"⚠️ Maintenance for game {self.code} skipped: {e}")

    async def run(self, stop: Optional[asyncio.Event] = None):
        """
        Cooperative poll loop; returns when stopped or removed. Store calls
        run in a worker thread so controllers sharing a loop don't block
        each other.
        """
        stop = stop or asyncio.Event()
        while not stop.is_set() and self.phase not in TERMINAL_PHASES:
            await asyncio.to_thread(self.tick)
            await asyncio.to_thread(self.maintain)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.settings.POLL_INTERVAL_SECONDS)
            except asyncio.TimeoutError:
                pass

    # ------------------------------
    # Commands
    # ------------------------------
    def _command(self, action: str, fn, *args, **kwargs) -> bool:
        """Run a command; errors become the dismissible `error` text."""
        self.error = ""
        try:
            fn(*args, **kwargs)
        except GameError as e:
            print(f"❌ Could not {action}: {e}")
            self.error = str(e)
            return False
        return True

    def dismiss_error(self):
        self.error = ""

    def _require_host(self, action: str):
        if not self.is_host:
            raise PreconditionError(f"Only the host can {action}.")

    def _require_round(self):
        if not self.outcome or self.phase not in IN_ROUND_PHASES:
            raise PreconditionError("No round is in progress.")

    def create_lobby(self, category_id: Optional[str], category_name: Optional[str],
                     category_words: List[str], force_single_imposter: bool = False,
                     require_chat_clue: bool = False, host_name: Optional[str] = None) -> bool:
        """Open a new room. With a host name this device also plays and is host."""
        def _create():
            if self.phase != DevicePhase.SETUP:
                raise PreconditionError("This device already has a lobby.")
            game = self.api.create_game_lobby(
                category_id, category_name, category_words,
                force_single_imposter=force_single_imposter,
                require_chat_clue=require_chat_clue,
            )
            if host_name is not None:
                _, player = self.api.join_game(game.code, host_name)
                self.api.set_game_host(game.code, player.player_id)
                self.player_id = player.player_id
            self.code = game.code
            self.phase = DevicePhase.LOBBY
            self.tick()

        return self._command("create game", _create)

    def join(self, code: Optional[str], name: str, deep_link: Optional[str] = None) -> bool:
        """Join a room by code; a ?join=CODE deep link fills in a missing code."""
        def _join():
            target = normalize_code(code) or join_code_from_url(deep_link)
            if not target:
                raise ValidationError("Please enter a code and name.")
            game, player = self.api.join_game(target, name)
            self.code = game.code
            self.player_id = player.player_id
            self.phase = DevicePhase.LOBBY
            self._loaded = False
            self.tick()

        return self._command("join game", _join)

    def start_round(self) -> bool:
        def _start():
            self._require_host("start a round")
            round_state.check_can_start(self.players, self.settings.MIN_PLAYERS)
            self.api.start_game(self.code)
            self.tick()

        return self._command("start game", _start)

    def move_to_voting(self) -> bool:
        def _move():
            self._require_host("start voting")
            self._require_round()
            round_state.check_can_move_to_voting(self.game, self.stage, self.round_players, self.messages)
            self.api.send_system_token(self.code, self.round_key, VOTING_START)
            self._refresh_round_data()

        return self._command("change stage", _move)

    def reveal_votes(self) -> bool:
        def _reveal():
            self._require_host("reveal votes")
            self._require_round()
            round_state.check_can_reveal_votes(self.stage, self.round_players, self.votes, self.seconds_left)
            self.api.send_system_token(self.code, self.round_key, REVEAL_VOTES)
            self._refresh_round_data()

        return self._command("change stage", _reveal)

    def reveal_imposter(self) -> bool:
        def _final():
            self._require_host("reveal the imposter")
            self.api.reveal_game(self.code)
            self.tick()

        return self._command("reveal results", _final)

    def send_chat(self, text: str) -> bool:
        def _send():
            self._require_round()
            if self.stage != RoundStage.DISCUSSION:
                raise PreconditionError("Discussion is over for this round.")
            if self.is_display:
                self.api.send_chat_message(self.code, self.round_key, None, HOST_NAME, text)
            else:
                if not self.in_round:
                    raise PreconditionError("You're not playing this round.")
                me = self.me
                self.api.send_chat_message(self.code, self.round_key, self.player_id,
                                           me.name if me else "", text)
            self._refresh_round_data()

        return self._command("send message", _send)

    def toggle_vote(self, target_player_id: str) -> bool:
        def _vote():
            self._require_round()
            if self.is_display or not self.in_round:
                raise PreconditionError("You're not voting this round.")
            if self.stage != RoundStage.VOTING:
                raise PreconditionError("Voting isn't open.")
            if not any(p.player_id == target_player_id for p in self.round_players):
                raise ValidationError("Player not found")
            self.api.toggle_vote(self.code, self.round_key, self.player_id,
                                 target_player_id, self.vote_cap)
            self._refresh_round_data()

        return self._command("cast vote", _vote)

    def set_ready(self, ready: bool) -> bool:
        def _ready():
            if not self.player_id:
                raise PreconditionError("This device isn't a player.")
            self.api.set_player_ready(self.player_id, ready)
            self.tick()

        return self._command("update player", _ready)

    def update_settings(self, **patch) -> bool:
        def _update():
            self._require_host("change lobby settings")
            if self.phase in IN_ROUND_PHASES:
                raise PreconditionError("Settings can't change during a round.")
            self.game = self.api.update_game_settings(self.code, **patch)

        return self._command("update lobby settings", _update)

    def kick(self, player_id: str) -> bool:
        def _kick():
            self._require_host("remove players")
            self.api.kick_player(player_id)
            self.tick()

        return self._command("remove player", _kick)

    def acknowledge_role(self):
        if self.phase == DevicePhase.ROLE:
            self.phase = DevicePhase.ROUND

    def back_to_lobby(self) -> bool:
        """After the reveal: ready up for the next round."""
        def _back():
            if self.phase != DevicePhase.FINAL:
                raise PreconditionError("The round isn't over yet.")
            self.phase = DevicePhase.LOBBY
            if self.player_id:
                self.api.set_player_ready(self.player_id, True)
            self.tick()

        return self._command("return to lobby", _back)

    def leave(self) -> bool:
        def _leave():
            if self.player_id:
                self.api.leave_game(self.player_id)

        ok = self._command("leave game", _leave)
        # Leaving always ends this device's session
        self.phase = DevicePhase.CLOSED
        return ok
