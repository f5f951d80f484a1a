"""
Matchmaking module: random one-to-one pairing with a two-sided commit.
"""

from chatmesh.matchmaking.engine import MatchmakingEngine, MatchOutcome, MatchStatus

__all__ = [
    "MatchmakingEngine",
    "MatchOutcome",
    "MatchStatus",
]
