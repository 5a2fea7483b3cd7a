"""
Daemon Loop
===========

The watcher is a long-running process: run one tick, sleep for the poll
interval, repeat. This module holds that loop so the watch logic itself
only has to describe a single tick.

Ctrl-C stops the loop cleanly. Any other exception escaping a tick is fatal
and propagates to the caller; the loop never reconnects or restarts itself.
"""

from __future__ import annotations

import time
from typing import Callable

import structlog

log = structlog.get_logger(__name__)


def run_polling_loop(
    *,
    daemon_name: str,
    tick: Callable[[], None],
    poll_interval_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    Call ``tick`` forever, sleeping ``poll_interval_seconds`` after each call.

    Args:
        daemon_name:
            Name used in log messages.
        tick:
            One polling iteration. Exceptions other than KeyboardInterrupt end
            the loop by propagating.
        poll_interval_seconds:
            How long to sleep between iterations (at least one second).
        sleep:
            Injectable sleep function (primarily for tests).
    """
    poll_interval_seconds = max(1, poll_interval_seconds)
    ticks = 0
    try:
        while True:
            tick()
            ticks += 1
            log.debug("Tick finished", daemon=daemon_name, ticks=ticks)
            sleep(poll_interval_seconds)
    except KeyboardInterrupt:
        log.info("Ctrl-C received; exiting", daemon=daemon_name, ticks=ticks)
