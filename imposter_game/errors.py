# imposter_game/errors.py


class GameError(ValueError):
    """Base class for errors shown to the player who triggered them."""
    status_code = 400


class ValidationError(GameError):
    """Bad name, empty message, unknown player."""
    status_code = 400


class RoomNotFound(ValidationError):
    status_code = 404


class CapacityError(GameError):
    """Vote cap exceeded or not enough ready players."""
    status_code = 409


class PreconditionError(GameError):
    """Stage transition requested out of order."""
    status_code = 409


class StoreError(GameError):
    """The shared store failed to read or write."""
    status_code = 503


class NotConfigured(GameError):
    """No shared store is configured, multi-device mode is off."""
    status_code = 503
