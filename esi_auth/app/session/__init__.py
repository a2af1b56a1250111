"""
Session management: code exchange, lazy refresh and the session state machine.
"""

from .manager import Session, SessionManager, SessionState

__all__ = ["Session", "SessionManager", "SessionState"]
