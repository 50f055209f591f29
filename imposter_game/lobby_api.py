# imposter_game/lobby_api.py
import random
from contextlib import contextmanager
from datetime import timedelta
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlencode, urlparse

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from imposter_game.config import Settings, settings as default_settings
from imposter_game.database import make_session_factory
from imposter_game.db_models import DBChatMessage, DBGame, DBPlayer, DBVote, utcnow
from imposter_game.errors import (
    CapacityError, NotConfigured, PreconditionError, RoomNotFound, StoreError, ValidationError,
)
from imposter_game.models import ChatMessage, Game, Lobby, Player, Vote, round_key_for
from imposter_game.moderation import clean_chat_text, clean_player_name
from imposter_game.outcome import compute_game_outcome
from imposter_game.round_state import HOST_NAME, SYSTEM_PREFIX

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6

SETTINGS_FIELDS = (
    "category_id",
    "category_name",
    "category_words",
    "force_single_imposter",
    "require_chat_clue",
)


def generate_game_code(length: int = CODE_LENGTH, rng: Optional[random.Random] = None) -> str:
    rng = rng or random
    return "".join(rng.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def build_join_url(origin: str, code: str) -> str:
    return f"{origin.rstrip('/')}/?{urlencode({'join': normalize_code(code)})}"


def join_code_from_url(url: Optional[str]) -> Optional[str]:
    """Room code carried by a ?join=CODE deep link, if any."""
    if not url:
        return None
    values = parse_qs(urlparse(url).query).get("join")
    code = normalize_code(values[0]) if values else ""
    return code or None


class LobbyApi:
    """
    Store client for multi-device mode.

    Every method opens its own session, does single-row writes, and returns
    in-memory snapshots so nothing holds a session between polls.
    """

    def __init__(self, session_factory, settings: Settings = default_settings,
                 clock: Callable = utcnow, rng: Optional[random.Random] = None,
                 code_factory: Callable[[], str] = generate_game_code):
        self._session_factory = session_factory
        self.settings = settings
        self.clock = clock
        self.rng = rng or random.Random()
        self.code_factory = code_factory

    @classmethod
    def from_settings(cls, settings: Settings = default_settings) -> "LobbyApi":
        return cls(make_session_factory(settings.DATABASE_URL), settings=settings)

    @property
    def configured(self) -> bool:
        return self._session_factory is not None

    def _get_db(self) -> Session:
        """Get a new database session"""
        if self._session_factory is None:
            raise NotConfigured("Multi-device mode is unavailable: no game server is configured.")
        return self._session_factory()

    @contextmanager
    def _session(self, action: str):
        db = self._get_db()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            print(f"❌ {action} failed: {e}")
            raise StoreError(f"Could not {action}. Please try again.") from e
        finally:
            db.close()

    # ------------------------------
    # Row -> snapshot helpers
    # ------------------------------
    @staticmethod
    def _db_game_to_memory(db_game: DBGame) -> Game:
        return Game(
            code=db_game.code,
            category_id=db_game.category_id,
            category_name=db_game.category_name,
            category_words=db_game.category_words or [],
            force_single_imposter=bool(db_game.force_single_imposter),
            require_chat_clue=bool(db_game.require_chat_clue),
            host_player_id=db_game.host_player_id,
            started_at=db_game.started_at,
            revealed_at=db_game.revealed_at,
            first_speaker_player_id=db_game.first_speaker_player_id,
            round_roster=db_game.round_roster or [],
        )

    @staticmethod
    def _db_player_to_memory(db_player: DBPlayer) -> Player:
        return Player(
            player_id=db_player.player_id,
            name=db_player.name,
            ready_for_next_round=bool(db_player.ready_for_next_round),
            last_seen_at=db_player.last_seen_at,
            joined_at=db_player.joined_at,
        )

    @staticmethod
    def _find_game(db: Session, code: str) -> DBGame:
        db_game = db.query(DBGame).filter(DBGame.code == normalize_code(code)).first()
        if not db_game:
            raise RoomNotFound("Game not found")
        return db_game

    @staticmethod
    def _list_players(db: Session, code: str) -> List[DBPlayer]:
        return (
            db.query(DBPlayer)
            .filter(DBPlayer.game_code == code)
            .order_by(DBPlayer.joined_at, DBPlayer.player_id)
            .all()
        )

    # ------------------------------
    # Rooms
    # ------------------------------
    def create_game_lobby(self, category_id: Optional[str], category_name: Optional[str],
                          category_words: List[str], force_single_imposter: bool = False,
                          require_chat_clue: bool = False) -> Game:
        """
        Create a room with a fresh code. Retries when the code is taken.
        """
        for _ in range(self.settings.CODE_CREATE_ATTEMPTS):
            code = self.code_factory()
            with self._session("create game") as db:
                db_game = DBGame(
                    code=code,
                    category_id=category_id,
                    category_name=category_name,
                    category_words=list(category_words or []),
                    force_single_imposter=force_single_imposter,
                    require_chat_clue=require_chat_clue,
                    created_at=self.clock(),
                )
                db.add(db_game)
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    print(f"⚠️ Game code {code} already taken, retrying")
                    continue
                db.refresh(db_game)
                print(f"✅ Game {code} created")
                return self._db_game_to_memory(db_game)

        raise StoreError("Could not create game lobby after several attempts.")

    def fetch_lobby_by_code(self, code: str) -> Lobby:
        with self._session("load game") as db:
            db_game = self._find_game(db, code)
            players = self._list_players(db, db_game.code)
            return Lobby(
                game=self._db_game_to_memory(db_game),
                players=[self._db_player_to_memory(p) for p in players],
            )

    def update_game_settings(self, code: str, **patch) -> Game:
        """Host changes category or flags without changing the room code."""
        unknown = set(patch) - set(SETTINGS_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")

        with self._session("update lobby settings") as db:
            db_game = self._find_game(db, code)
            for field, value in patch.items():
                if field == "category_words":
                    value = list(value or [])
                setattr(db_game, field, value)
            db.commit()
            db.refresh(db_game)
            return self._db_game_to_memory(db_game)

    def set_game_host(self, code: str, player_id: Optional[str]) -> Game:
        with self._session("set host") as db:
            db_game = self._find_game(db, code)
            db_game.host_player_id = player_id
            db.commit()
            db.refresh(db_game)
            return self._db_game_to_memory(db_game)

    def start_game(self, code: str) -> Game:
        """
        Start a new round: stamp started_at (the new round key), clear any
        reveal, and persist the roster and first speaker so every device
        agrees on them no matter when it first polls.
        """
        with self._session("start game") as db:
            db_game = self._find_game(db, code)
            ready = [
                self._db_player_to_memory(p)
                for p in self._list_players(db, db_game.code)
                if p.ready_for_next_round
            ]

            game = self._db_game_to_memory(db_game)
            game.started_at = self.clock()
            game.revealed_at = None
            outcome = compute_game_outcome(game, ready)

            db_game.started_at = game.started_at
            db_game.revealed_at = None
            db_game.first_speaker_player_id = outcome.first_speaker_id
            db_game.round_roster = [{"player_id": p.player_id, "name": p.name} for p in ready]
            db.commit()
            db.refresh(db_game)

            print(f"✅ Game {db_game.code} round {round_key_for(db_game.started_at)} started "
                  f"with {len(ready)} players")
            return self._db_game_to_memory(db_game)

    def reveal_game(self, code: str) -> Game:
        """Mark the round revealed and clear everyone's ready flag."""
        with self._session("reveal results") as db:
            db_game = self._find_game(db, code)
            if not db_game.started_at:
                raise PreconditionError("You can't reveal results before a round has started.")

            db_game.revealed_at = self.clock()
            db.query(DBPlayer).filter(DBPlayer.game_code == db_game.code).update(
                {"ready_for_next_round": False}
            )
            db.commit()
            db.refresh(db_game)
            print(f"✅ Game {db_game.code} revealed")
            return self._db_game_to_memory(db_game)

    # ------------------------------
    # Players
    # ------------------------------
    def join_game(self, code: str, name: str) -> Tuple[Game, Player]:
        """
        Add a player to a room. Names are sanitized, moderated and
        unique within the room regardless of case.
        """
        safe_name = clean_player_name(name, self.settings.MAX_NAME_LENGTH)
        if safe_name.upper() == HOST_NAME:
            raise ValidationError("That name is reserved. Please choose another.")

        with self._session("join game") as db:
            db_game = self._find_game(db, code)

            taken = {(p.name or "").lower() for p in self._list_players(db, db_game.code)}
            if safe_name.lower() in taken:
                raise ValidationError("That name is already taken in this lobby. Please choose another.")

            now = self.clock()
            db_player = DBPlayer(
                game_code=db_game.code,
                name=safe_name,
                ready_for_next_round=True,
                last_seen_at=now,
                joined_at=now,
            )
            db.add(db_player)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise ValidationError("That name is already taken in this lobby. Please choose another.")
            db.refresh(db_player)
            db.refresh(db_game)

            print(f"✅ Player {safe_name} joined game {db_game.code}")
            return self._db_game_to_memory(db_game), self._db_player_to_memory(db_player)

    def set_player_ready(self, player_id: str, ready: bool) -> Player:
        with self._session("update player") as db:
            db_player = db.query(DBPlayer).filter(DBPlayer.player_id == player_id).first()
            if not db_player:
                raise ValidationError("Player not found")
            db_player.ready_for_next_round = ready
            db_player.last_seen_at = self.clock()
            db.commit()
            db.refresh(db_player)
            return self._db_player_to_memory(db_player)

    def touch_player(self, player_id: Optional[str]):
        """Heartbeat: keeps an active player from being pruned."""
        if not player_id:
            return
        with self._session("refresh heartbeat") as db:
            db.query(DBPlayer).filter(DBPlayer.player_id == player_id).update(
                {"last_seen_at": self.clock()}
            )
            db.commit()

    def _reassign_host(self, db: Session, db_game: DBGame):
        """Pick a random remaining player as host, or clear the host."""
        remaining = self._list_players(db, db_game.code)
        if not remaining:
            db_game.host_player_id = None
            print(f"⚠️ Game {db_game.code} has no players left, host cleared")
        else:
            new_host = self.rng.choice(remaining)
            db_game.host_player_id = new_host.player_id
            print(f"✅ {new_host.name} is now host of game {db_game.code}")

    def _delete_players(self, db: Session, db_game: DBGame, db_players: List[DBPlayer]) -> List[str]:
        removed = [p.player_id for p in db_players]
        for db_player in db_players:
            db.delete(db_player)
        db.flush()
        if db_game.host_player_id in removed:
            self._reassign_host(db, db_game)
        db.commit()
        return removed

    def leave_game(self, player_id: Optional[str]):
        """Remove a player completely; promote someone else if they were host."""
        if not player_id:
            return
        with self._session("leave game") as db:
            db_player = db.query(DBPlayer).filter(DBPlayer.player_id == player_id).first()
            if not db_player:
                # Already gone, nothing to do
                return
            db_game = db_player.game
            name, code = db_player.name, db_game.code
            self._delete_players(db, db_game, [db_player])
            print(f"🔴 Player {name} left game {code}")

    def kick_player(self, player_id: Optional[str]):
        self.leave_game(player_id)

    def prune_inactive_players(self, code: str, timeout_seconds: Optional[int] = None) -> List[str]:
        """Remove players whose heartbeat is older than the timeout or missing."""
        timeout = self.settings.PRUNE_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        cutoff = self.clock() - timedelta(seconds=timeout)
        with self._session("prune players") as db:
            db_game = self._find_game(db, code)
            stale = (
                db.query(DBPlayer)
                .filter(
                    DBPlayer.game_code == db_game.code,
                    or_(DBPlayer.last_seen_at < cutoff, DBPlayer.last_seen_at.is_(None)),
                )
                .all()
            )
            if not stale:
                return []
            removed = self._delete_players(db, db_game, stale)
            print(f"🔴 Pruned {len(removed)} inactive players from game {db_game.code}")
            return removed

    # ------------------------------
    # Round events
    # ------------------------------
    def _append_event(self, db: Session, code: str, round_key: str, player_id: Optional[str],
                      name: str, text: str) -> ChatMessage:
        if not round_key:
            raise PreconditionError("No round is in progress.")
        db_game = self._find_game(db, code)
        db_msg = DBChatMessage(
            game_code=db_game.code,
            round_key=round_key,
            player_id=player_id,
            name=name,
            message=text,
            created_at=self.clock(),
        )
        db.add(db_msg)
        db.commit()
        db.refresh(db_msg)
        return ChatMessage(db_msg.id, db_msg.player_id, db_msg.name, db_msg.message,
                           db_msg.created_at, db_msg.round_key)

    def send_chat_message(self, code: str, round_key: str, player_id: Optional[str],
                          name: str, text: str) -> ChatMessage:
        clean = clean_chat_text(text, self.settings.MAX_MESSAGE_LENGTH)
        # Stage tokens only go through send_system_token
        if clean.upper().startswith(SYSTEM_PREFIX):
            raise ValidationError("Messages can't start with a system tag.")
        with self._session("send message") as db:
            return self._append_event(db, code, round_key, player_id, name, clean)

    def send_system_token(self, code: str, round_key: str, token: str,
                          player_id: Optional[str] = None) -> ChatMessage:
        """Stage tokens are written as HOST messages; they skip moderation."""
        with self._session("change stage") as db:
            return self._append_event(db, code, round_key, player_id, HOST_NAME, token)

    def fetch_chat_messages(self, code: str, round_key: Optional[str],
                            limit: Optional[int] = None) -> List[ChatMessage]:
        """
        The newest `limit` lines of the round, oldest first. Stage tokens are
        always included however far back they are, so the stage can be
        derived from any long log.
        """
        if not round_key:
            return []
        limit = self.settings.CHAT_FETCH_LIMIT if limit is None else limit
        with self._session("load chat") as db:
            in_round = db.query(DBChatMessage).filter(
                DBChatMessage.game_code == normalize_code(code),
                DBChatMessage.round_key == round_key,
            )
            newest = (
                in_round
                .order_by(DBChatMessage.created_at.desc(), DBChatMessage.id.desc())
                .limit(limit)
                .all()
            )
            tokens = in_round.filter(
                func.upper(DBChatMessage.name) == HOST_NAME,
                DBChatMessage.message.startswith(SYSTEM_PREFIX, autoescape=True),
            ).all()

            rows = {m.id: m for m in newest}
            rows.update((m.id, m) for m in tokens)
            ordered = sorted(rows.values(), key=lambda m: (m.created_at, m.id))
            return [
                ChatMessage(m.id, m.player_id, m.name, m.message, m.created_at, m.round_key)
                for m in ordered
            ]

    # ------------------------------
    # Votes
    # ------------------------------
    def toggle_vote(self, code: str, round_key: str, voter_id: str, target_id: str,
                    cap: int) -> Dict[str, bool]:
        """
        Flip one selection on the voter's ballot.
        Existing row -> retract it. Otherwise insert, unless the voter
        already holds `cap` selections this round.
        """
        if not round_key:
            raise PreconditionError("No round is in progress.")
        code = normalize_code(code)

        with self._session("cast vote") as db:
            mine = db.query(DBVote).filter(
                DBVote.game_code == code,
                DBVote.round_key == round_key,
                DBVote.voter_player_id == voter_id,
            )
            existing = mine.filter(DBVote.target_player_id == target_id).first()
            if existing:
                db.delete(existing)
                db.commit()
                return {"selected": False}

            if mine.count() >= cap:
                raise CapacityError(
                    f"You can only vote for up to {cap} player{'' if cap == 1 else 's'}."
                )

            db.add(DBVote(
                game_code=code,
                round_key=round_key,
                voter_player_id=voter_id,
                target_player_id=target_id,
                created_at=self.clock(),
            ))
            try:
                db.commit()
            except IntegrityError:
                # Same selection landed from another request first
                db.rollback()
            return {"selected": True}

    def fetch_votes(self, code: str, round_key: Optional[str]) -> List[Vote]:
        if not round_key:
            return []
        with self._session("load votes") as db:
            rows = (
                db.query(DBVote)
                .filter(DBVote.game_code == normalize_code(code), DBVote.round_key == round_key)
                .order_by(DBVote.created_at, DBVote.id)
                .all()
            )
            return [Vote(v.voter_player_id, v.target_player_id, v.created_at) for v in rows]


@lru_cache(maxsize=1)
def get_lobby_api() -> LobbyApi:
    """Shared store client for the configured DATABASE_URL."""
    return LobbyApi.from_settings()
