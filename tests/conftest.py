import random
from datetime import datetime, timedelta

import pytest

from imposter_game.config import Settings
from imposter_game.database import make_session_factory
from imposter_game.lobby_api import LobbyApi
from imposter_game.models import Player

WORDS = ["Pizza", "Burger", "Taco", "Sushi", "Pasta"]


class FakeClock:
    """Moves forward a millisecond on every read so rows keep their insert order."""

    def __init__(self, start=datetime(2025, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        self.now += timedelta(milliseconds=1)
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(DATABASE_URL="sqlite://")


@pytest.fixture
def api(settings, clock):
    return LobbyApi(
        make_session_factory(settings.DATABASE_URL),
        settings=settings,
        clock=clock,
        rng=random.Random(7),
    )


@pytest.fixture
def game(api):
    return api.create_game_lobby("food", "Food", WORDS)


@pytest.fixture
def make_roster():
    def _make(names):
        return [Player(player_id=f"p{i}", name=name) for i, name in enumerate(names)]
    return _make
