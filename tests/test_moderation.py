import pytest

from imposter_game.errors import ValidationError
from imposter_game.moderation import (
    clean_chat_text, clean_player_name, is_text_allowed, normalize_for_moderation, sanitize_name,
)


def test_sanitize_name():
    assert sanitize_name("  Big   \t Tony  ") == "Big Tony"
    assert sanitize_name("Ana\x07") == "Ana"
    assert sanitize_name(None) == ""
    assert len(sanitize_name("x" * 40)) == 18


def test_normalize_folds_leetspeak_and_repeats():
    assert normalize_for_moderation("H3LL000 W0rld") == "heloworld"
    assert normalize_for_moderation("hi!!") == "hi"
    assert normalize_for_moderation("$p1c") == "spic"
    assert normalize_for_moderation("r.e.t.a.r.d") == "retard"


@pytest.mark.parametrize("text", ["retard", "R E T A R D", "reeetaaard", "r3t@rd", "Faaaggot"])
def test_denylist_catches_variants(text):
    assert not is_text_allowed(text)


@pytest.mark.parametrize("text", ["Ana", "Pizza lover", "I think it's Ben", "Speaker 2"])
def test_clean_text_passes(text):
    assert is_text_allowed(text)


def test_clean_player_name_errors():
    with pytest.raises(ValidationError):
        clean_player_name("   ")
    with pytest.raises(ValidationError):
        clean_player_name("tr4nny")
    assert clean_player_name("  Cara ") == "Cara"


def test_clean_chat_text():
    assert clean_chat_text("  it's round  ", 300) == "it's round"
    with pytest.raises(ValidationError):
        clean_chat_text("", 300)
    with pytest.raises(ValidationError):
        clean_chat_text("abcdef", 5)
