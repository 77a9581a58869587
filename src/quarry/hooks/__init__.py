"""
Lifecycle hooks registry for Quarry entities.
"""

from .auditing import AuditingListener, utc_now
from .dispatcher import EVENTS, HookDispatcher, HookEvent, hooks

__all__ = ["AuditingListener", "EVENTS", "HookDispatcher", "HookEvent", "hooks", "utc_now"]
