"""Client side of the board: optimistic state container and remote collaborators."""

from __future__ import annotations

from .optimistic import BoardState, Notice, OptimisticBoard
from .remote import BoardRemote, HttpBoardRemote, LocalBoardRemote, RemoteError

__all__ = [
    "BoardRemote",
    "BoardState",
    "HttpBoardRemote",
    "LocalBoardRemote",
    "Notice",
    "OptimisticBoard",
    "RemoteError",
]
