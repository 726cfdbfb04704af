"""
Browser module for Bubuverse Farm.

Provides the Camoufox (hardened Firefox fork) session backend.  Each wallet
gets its own isolated Playwright context bound to its proxy and User-Agent;
the service's landing page is visited first so that its bot-challenge
cookies are set before any API call.

Submodules:
    instance: ``BrowserSessionProvider`` and ``PageSession``.
"""

from .instance import BrowserSessionProvider, PageSession

__all__ = ["BrowserSessionProvider", "PageSession"]
