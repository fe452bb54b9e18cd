"""Errors raised by the game core.

Every error carries a ``kind`` so the transport can tell the client what went
wrong without leaking internals.
"""


class GameError(Exception):
    """Base class for errors reported back to the originating connection."""
    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.kind)
        self.message = str(self.args[0])


class ValidationError(GameError):
    """Invalid input."""
    kind = "validation"


class NotFoundError(GameError):
    """Unknown room, player or session."""
    kind = "not_found"


class CapacityError(GameError):
    """A capacity limit was reached."""
    kind = "capacity"


class StateError(GameError):
    """Action not valid in the current session state."""
    kind = "state"


class AuthorizationError(GameError):
    """Action reserved to the host."""
    kind = "authorization"


class InvalidName(ValidationError):
    """Player name must be 2-20 letters, digits, spaces, dashes or underscores."""
    pass


class InvalidRoomCode(ValidationError):
    """Room code must be 6 uppercase letters or digits."""
    pass


class InvalidSettings(ValidationError):
    """Invalid game settings."""
    pass


class DuplicateConnection(ValidationError):
    """A player is already registered for this connection."""
    pass


class RoomNotFound(NotFoundError):
    """Room not found."""
    pass


class SessionNotFound(NotFoundError):
    """No game is running in this room."""
    pass


class PlayerNotFound(NotFoundError):
    """Player not found."""
    pass


class RoomFull(CapacityError):
    """Room is full."""
    pass


class DuplicatePlayer(StateError):
    """Player is already in the room."""
    pass


class GameInProgress(StateError):
    """A game is already in progress in this room."""
    pass


class InsufficientPlayers(StateError):
    """At least 2 players are needed to start."""
    pass


class NoActiveQuestion(StateError):
    """There is no active question."""
    pass


class DuplicateAnswer(StateError):
    """Player already answered this question."""
    pass


class NotHost(AuthorizationError):
    """Only the host can do that."""
    pass
