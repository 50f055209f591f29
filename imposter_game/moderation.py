# imposter_game/moderation.py
import re
from imposter_game.errors import ValidationError

MAX_NAME_LEN = 18

# Keep this short + obvious; matched against normalized text
BANNED_SUBSTRINGS = [
    "nigger",
    "faggot",
    "tranny",
    "kike",
    "spic",
    "chink",
    "retard",
]

LEET_MAP = str.maketrans({
    "0": "o",
    "1": "i",
    "3": "e",
    "4": "a",
    "5": "s",
    "7": "t",
    "8": "b",
    "@": "a",
    "$": "s",
    "!": "i",
    "|": "l",
})

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^a-z0-9]")
_REPEATS = re.compile(r"(.)\1+")


def sanitize_name(raw, max_len: int = MAX_NAME_LEN) -> str:
    text = "" if raw is None else str(raw)
    text = _WHITESPACE.sub(" ", text.strip())
    text = _CONTROL_CHARS.sub("", text)
    return text[:max_len]


def normalize_for_moderation(text: str) -> str:
    folded = (text or "").lower().translate(LEET_MAP)
    folded = _NON_ALNUM.sub("", folded)
    return _REPEATS.sub(r"\1", folded)


# Denylist goes through the same folding so "faggot" still matches "fagot"
_BANNED_NORMALIZED = [normalize_for_moderation(b) for b in BANNED_SUBSTRINGS]


def is_text_allowed(text: str) -> bool:
    normalized = normalize_for_moderation(text)
    return not any(b in normalized for b in _BANNED_NORMALIZED)


def clean_player_name(raw, max_len: int = MAX_NAME_LEN) -> str:
    """Sanitized name, or ValidationError if it's empty or not allowed."""
    name = sanitize_name(raw, max_len)
    if not name:
        raise ValidationError("Please enter a name.")
    if not is_text_allowed(name):
        raise ValidationError("That name isn't allowed. Please choose another.")
    return name


def clean_chat_text(raw, max_len: int) -> str:
    text = ("" if raw is None else str(raw)).strip()
    if not text:
        raise ValidationError("Message can't be empty.")
    if len(text) > max_len:
        raise ValidationError(f"Message is too long (max {max_len} characters).")
    if not is_text_allowed(text):
        raise ValidationError("That message isn't allowed.")
    return text
