"""Shutdown on SIGINT and SIGTERM."""

from __future__ import annotations

import asyncio
import logging
import signal


logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def install_shutdown_signals(loop: asyncio.AbstractEventLoop | None = None) -> asyncio.Event:
    """Return an event that the first SIGINT or SIGTERM sets.

    The scheduler finishes the tick in progress before it checks the event, so
    a signal never interrupts a half-applied reconciliation.
    """
    loop = loop or asyncio.get_running_loop()
    stop = asyncio.Event()

    def request_stop(sig: signal.Signals) -> None:
        if stop.is_set():
            logger.debug("Ignoring %s, shutdown already requested", sig.name)
            return
        logger.info("Received %s, stopping after the current tick", sig.name)
        stop.set()

    for sig in SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(sig, request_stop, sig)
        except (NotImplementedError, RuntimeError):
            logger.debug("Cannot watch %s from this loop", sig.name)

    return stop
