# imposter_game/db_models.py
from sqlalchemy import Column, String, Integer, Boolean, Text, ForeignKey, DateTime, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import uuid
from imposter_game.database import Base


def utcnow() -> datetime:
    """Naive UTC now, the form every timestamp column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DBGame(Base):
    """
    Represents a room in the database.
    Maps to the 'games' table.
    """
    __tablename__ = "games"

    code = Column(String(6), primary_key=True)
    category_id = Column(String(100), nullable=True)
    category_name = Column(String(100), nullable=True)
    category_words = Column(JSON, nullable=False, default=list)
    force_single_imposter = Column(Boolean, default=False, nullable=False)
    require_chat_clue = Column(Boolean, default=False, nullable=False)
    host_player_id = Column(String(36), nullable=True)
    # started_at doubles as the round key; null means no round yet
    started_at = Column(DateTime, nullable=True)
    revealed_at = Column(DateTime, nullable=True)
    first_speaker_player_id = Column(String(36), nullable=True)
    # [{"player_id", "name"}] of the ready players at start, in join order
    round_roster = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=utcnow)

    # Relationship: One game has many players
    players = relationship("DBPlayer", back_populates="game", cascade="all, delete-orphan")
    messages = relationship("DBChatMessage", back_populates="game", cascade="all, delete-orphan")
    votes = relationship("DBVote", back_populates="game", cascade="all, delete-orphan")


class DBPlayer(Base):
    """
    Represents a player in the database.
    Maps to the 'players' table.
    """
    __tablename__ = "players"

    player_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    game_code = Column(String(6), ForeignKey("games.code", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    ready_for_next_round = Column(Boolean, default=True, nullable=False)
    last_seen_at = Column(DateTime, nullable=True)
    joined_at = Column(DateTime, default=utcnow)

    # Relationship: Player belongs to one game
    game = relationship("DBGame", back_populates="players")

    __table_args__ = (
        UniqueConstraint('game_code', 'name', name='unique_player_name_per_game'),
    )


class DBChatMessage(Base):
    """
    One round event: a chat line or a stage token.
    Maps to the 'chat_messages' table. Append-only.
    """
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_code = Column(String(6), ForeignKey("games.code", ondelete="CASCADE"), nullable=False, index=True)
    round_key = Column(String(40), nullable=False, index=True)
    player_id = Column(String(36), nullable=True)  # null for host display / system
    name = Column(String(100), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    game = relationship("DBGame", back_populates="messages")


class DBVote(Base):
    """
    Represents one selection on a voter's ballot.
    Maps to the 'votes' table.
    """
    __tablename__ = "votes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_code = Column(String(6), ForeignKey("games.code", ondelete="CASCADE"), nullable=False)
    round_key = Column(String(40), nullable=False)
    voter_player_id = Column(String(36), nullable=False)
    target_player_id = Column(String(36), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    # Relationship: Vote belongs to one game
    game = relationship("DBGame", back_populates="votes")

    # A voter can select each target at most once per round
    __table_args__ = (
        UniqueConstraint('game_code', 'round_key', 'voter_player_id', 'target_player_id',
                         name='unique_vote_selection'),
    )
