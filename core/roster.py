"""Registration roster backed by a JSON file.

The roster is the list of accounts the scheduler claims for.  Entries are
never deleted: deactivation, invalidation and deregistration are status
changes, so claim history can always be traced to a registration.

Key exports:
    RegistrationRoster: load/save, register, status transitions and the
        ``list_active`` / ``count_active`` provider calls.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from core.config import Registration, RegistrationStatus
from core.utils import safe_json_read, safe_json_write

logger = logging.getLogger(__name__)


class RegistrationRoster:
    """Registrations keyed by account id, persisted after every change.

    Args:
        path: JSON file holding ``{"registrations": [...]}``.  A missing
            file means an empty roster.
    """

    def __init__(self, path: str):
        self.path = path
        self._entries: Dict[str, Registration] = {}
        self.load()

    def load(self) -> None:
        data = safe_json_read(self.path)
        self._entries = {}
        if not data:
            return
        for raw in data.get("registrations", []):
            try:
                registration = Registration.model_validate(raw)
            except ValueError as exc:
                logger.warning("Skipping malformed roster entry %r: %s", raw, exc)
                continue
            self._entries[registration.account_id] = registration
        logger.debug(
            "Loaded %d registration(s) from %s", len(self._entries), self.path
        )

    def save(self) -> bool:
        payload = {
            "registrations": [
                entry.model_dump(mode="json") for entry in self._entries.values()
            ]
        }
        saved = safe_json_write(self.path, payload)
        if not saved:
            logger.warning(f"⚠️ Roster changes could not be written to {self.path}")
        return saved

    def get(self, account_id: str) -> Optional[Registration]:
        return self._entries.get(account_id)

    def all(self) -> List[Registration]:
        return list(self._entries.values())

    def list_active(self) -> List[Registration]:
        """Active registrations in registration order."""
        return [entry for entry in self._entries.values() if entry.is_active]

    def count_active(self) -> int:
        return len(self.list_active())

    def register(
        self, account_id: str, username: Optional[str] = None
    ) -> Registration:
        """Add an account, or reactivate it if it was previously removed.

        Args:
            account_id: Identifier entered on the website's login form.
            username: Display name; defaults to the account id.

        Returns:
            The stored registration.
        """
        account_id = str(account_id).strip()
        if not account_id:
            raise ValueError("account_id must not be empty")

        existing = self._entries.get(account_id)
        if existing is not None:
            if username:
                existing.username = username
            if not existing.is_active:
                self._transition(existing, RegistrationStatus.ACTIVE, "re-registered")
            self.save()
            return existing

        registration = Registration(
            account_id=account_id, username=username or account_id
        )
        self._entries[account_id] = registration
        if self.save():
            logger.info(f"✅ Registered account {account_id} ({registration.username})")
        else:
            logger.warning(f"Account {account_id} registered for this process only")
        return registration

    def seed(self, account_ids: Iterable[str]) -> int:
        """Register any of *account_ids* not yet on the roster.

        Existing entries keep their status, so a deregistered account is not
        revived by a stale seed list.

        Returns:
            Number of accounts added.
        """
        added = 0
        for account_id in account_ids:
            account_id = str(account_id).strip()
            if not account_id or account_id in self._entries:
                continue
            self._entries[account_id] = Registration(
                account_id=account_id, username=account_id
            )
            added += 1
        if added and self.save():
            logger.info("Seeded %d account(s) into the roster", added)
        return added

    def set_status(
        self,
        account_id: str,
        status: RegistrationStatus,
        reason: Optional[str] = None,
    ) -> Registration:
        """Move an account to *status*.

        Raises:
            KeyError: If the account is not registered.
        """
        entry = self._entries.get(account_id)
        if entry is None:
            raise KeyError(account_id)
        self._transition(entry, RegistrationStatus(status), reason)
        self.save()
        return entry

    def mark_invalid(self, account_id: str, reason: str) -> Registration:
        return self.set_status(account_id, RegistrationStatus.INVALID, reason)

    def deregister(self, account_id: str, reason: Optional[str] = None) -> Registration:
        return self.set_status(
            account_id, RegistrationStatus.DEREGISTERED, reason or "removal approved"
        )

    def _transition(
        self,
        entry: Registration,
        status: RegistrationStatus,
        reason: Optional[str],
    ) -> None:
        previous = entry.status
        entry.status = status
        entry.status_reason = reason
        entry.updated_at = datetime.now(timezone.utc)
        logger.info(
            "Registration %s: %s -> %s (%s)",
            entry.account_id, previous.value, status.value, reason or "-",
        )
