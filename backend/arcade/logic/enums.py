"""
String enum definitions for arcade session concepts.
"""

from enum import Enum


class SessionPhase(str, Enum):
    """Controller state machine phases. COMPLETE is terminal."""

    INTRO = "intro"
    PLAYING = "playing"
    RESULTS = "results"
    COMPLETE = "complete"


class Grade(str, Enum):
    """Letter grade bands, best first."""

    S = "S"
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"


class ScoringFamily(str, Enum):
    """Normalization families a mini-game's scoring rule can belong to."""

    ACCURACY = "accuracy"
    PROGRESSION = "progression"
    POINTS = "points"
    DIMINISHING = "diminishing"
    DEADLINE = "deadline"


class RoundEndReason(str, Enum):
    """Why a round stopped accepting input."""

    COMPLETED = "completed"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"
    QUIT = "quit"


class ExitReason(str, Enum):
    """Why a session left for the menu."""

    QUIT = "quit"
    LOAD_ERROR = "load_error"
    NO_ROUNDS = "no_rounds"
    MENU = "menu"


class SaveStatus(str, Enum):
    """Persistence state of one session. SAVED is terminal."""

    UNSAVED = "unsaved"
    AWAITING_AUTH = "awaiting_auth"
    SAVING = "saving"
    SAVED = "saved"
    FAILED = "failed"
