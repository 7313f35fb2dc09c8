"""
Core module for Rewardbot.

Configuration, persistence and orchestration for scheduled reward claiming.

Submodules:
    config: Application settings (``ClaimerSettings``, ``RewardSection``,
        ``Registration``) via Pydantic.
    limiter: ``ConcurrencyLimiter`` bounding simultaneous claim sessions.
    ledger: SQLite ``ClaimLedger`` with read-time duplicate suppression.
    roster: JSON-backed ``RegistrationRoster``.
    orchestrator: ``RunScheduler`` running claim cycles for the roster.
    notifier: Run summary sinks (log, rich console, webhook).
    logging_setup: Compressed rotating file + safe console logging.
    utils: Corruption-safe JSON helpers and account id validation.
"""
