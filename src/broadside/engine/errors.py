"""Expected, recoverable failures raised by the game engine and its collaborators."""

from __future__ import annotations


class GameError(Exception):
    """Base class for all rule and concurrency violations."""

    code = "game_error"

    def __init__(self, message: str, **details: object) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, object]:
        """Return a JSON-friendly description of the failure."""
        return {"error": self.message, "code": self.code, **self.details}


class NotFound(GameError, LookupError):
    """Referenced game does not exist."""

    code = "not_found"


class InvalidPhase(GameError, RuntimeError):
    """Operation attempted outside the phase that allows it."""

    code = "invalid_phase"


class NotYourTurn(GameError, RuntimeError):
    """Attack attempted by the player who does not hold the turn."""

    code = "not_your_turn"


class InvalidPlacement(GameError, ValueError):
    """Ship footprint is out of bounds, overlapping, or not allowed."""

    code = "invalid_placement"


class InvalidAttack(GameError, ValueError):
    """Target cell is out of bounds or was already attacked."""

    code = "invalid_attack"


class GameFull(GameError):
    """Join attempted on a game that already has two players."""

    code = "game_full"


class PreconditionFailed(GameError):
    """A conditional store update lost a race; the caller may retry."""

    code = "precondition_failed"
