"""Bracket engine errors. Routes translate these into HTTP responses via status_code."""
from __future__ import annotations


class BracketError(ValueError):
    """Base class for caller-facing bracket validation failures."""

    status_code = 400


class InvalidFormatError(BracketError):
    pass


class InsufficientTeamsError(BracketError):
    pass


class InvalidSlotCountError(BracketError):
    pass


class InvalidWinnerError(BracketError):
    pass


class InvalidScoreError(BracketError):
    pass


class AmbiguousResultError(BracketError):
    pass


class TournamentNotFoundError(BracketError):
    status_code = 404


class BracketNotFoundError(BracketError):
    status_code = 404


class MatchNotFoundError(BracketError):
    status_code = 404


class MatchNotReadyError(BracketError):
    status_code = 409


class RoundIncompleteError(MatchNotReadyError):
    """Previous Swiss round still has undecided matches."""


class DownstreamAlreadyDecidedError(BracketError):
    status_code = 409


class BracketAlreadyBuiltError(BracketError):
    status_code = 409


class BracketCompleteError(BracketError):
    status_code = 409
