"""
Reward claiming for Rewardbot.

Submodules:
    classifier: Pure click/count predicates for reward buttons and label
        extraction.
    session: ``ClaimSession`` state machine that logs an account in, sweeps
        every reward section and records one ledger entry.
"""

from .session import ClaimSession, SessionState

__all__ = ["ClaimSession", "SessionState"]
