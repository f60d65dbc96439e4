# Overview: Fire-and-forget execution of callables in daemon threads with an app context.

from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)


def run_in_background(app, fn, *args, name: str | None = None, **kwargs) -> threading.Thread:
    """
    Run fn(*args, **kwargs) in a daemon thread inside app.app_context().

    Exceptions are logged, never raised: callers use this for side effects whose
    failure must not change their own result.
    """
    def _target():
        with app.app_context():
            try:
                fn(*args, **kwargs)
            except Exception:
                logger.exception("Background task %s failed", name or getattr(fn, "__name__", "task"))

    thread = threading.Thread(target=_target, name=name, daemon=True)
    thread.start()
    return thread
