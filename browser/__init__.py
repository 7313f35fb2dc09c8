"""
Browser module for Rewardbot.

Browser automation built on Camoufox (a hardened Firefox fork) and
Playwright.

- **BrowserManager** – launches the shared browser and hands out one
  isolated context per claim session.
- **PageAutomation** – the page operations a claim session performs,
  with navigation timeouts surfaced as ``NavigationTimeout``.

Submodules:
    instance: ``BrowserManager`` class.
    automation: ``PageAutomation`` and the ``SessionError`` hierarchy.
"""

from .automation import (
    ElementNotFound,
    InvalidAccount,
    NavigationTimeout,
    PageAutomation,
    SessionError,
)
from .instance import BrowserManager

__all__ = [
    "BrowserManager",
    "ElementNotFound",
    "InvalidAccount",
    "NavigationTimeout",
    "PageAutomation",
    "SessionError",
]
