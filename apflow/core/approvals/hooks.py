"""In-process callbacks for invoice approval events.

The engine fires events only after its transaction has committed, so a
handler always observes the new state. A failing handler is logged and
skipped; it never undoes the approval action.

Usage:
    from apflow.core.approvals import hooks

    hooks.on('approval.approved', post_to_erp)

Events (payload always has firm_id, invoice_id, plan_id):
    approval.submitted      active plan created (requester_user_id, chain)
    approval.step_advanced  next step became pending (step_index, approver_user_id)
    approval.approved       plan completed, invoice approved (auto_approved)
    approval.rejected       plan rejected (actor_user_id, comment)
"""

import logging
import threading

logger = logging.getLogger('apflow.core.approvals.hooks')

_registry: dict[str, list] = {}
_lock = threading.Lock()


def on(event_type: str, callback):
    """Register a callback for an event type."""
    with _lock:
        _registry.setdefault(event_type, []).append(callback)
    logger.debug(f"Registered hook for {event_type}: {getattr(callback, '__name__', callback)}")


def fire(event_type: str, payload: dict):
    """Call every callback registered for event_type, in registration order."""
    with _lock:
        callbacks = list(_registry.get(event_type, []))
    for cb in callbacks:
        try:
            cb(payload)
        except Exception as e:
            logger.error(
                f"Hook error for {event_type} in {getattr(cb, '__name__', cb)}: {e}",
                exc_info=True,
            )


def clear(event_type: str = None):
    """Clear hooks. If event_type given, clear only that type. Used in tests."""
    with _lock:
        if event_type:
            _registry.pop(event_type, None)
        else:
            _registry.clear()
