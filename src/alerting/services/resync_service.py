from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Tuple

from src.alerting.services.alert_rules_service import resync_stored_rule
from src.alerting.state import AppState

logger = logging.getLogger(__name__)


async def _run_in_thread(func, *args, **kwargs):
    """Run blocking pymongo/httpx calls in a worker thread."""
    return await asyncio.to_thread(func, *args, **kwargs)


# PUBLIC_INTERFACE
async def resync_tick(state: AppState) -> Tuple[int, int]:
    """
    Re-apply every stored rule once.

    Per-rule failures are logged and skipped. Returns (synced, failed).
    """
    rules = await _run_in_thread(lambda: list(state.rules.iter_all()))
    synced = failed = 0
    for rule in rules:
        try:
            results = await _run_in_thread(resync_stored_rule, state, rule)
        except Exception:
            failed += 1
            logger.exception("Resync failed for rule %s/%s on cluster=%s", rule.namespace, rule.name, rule.cluster)
            continue
        synced += 1
        if any(v != "unchanged" for v in results.values()):
            logger.info("Resync converged drifted rule %s/%s on cluster=%s: %s", rule.namespace, rule.name, rule.cluster, results)
    return synced, failed


# PUBLIC_INTERFACE
async def resync_loop(state: AppState, shutdown_event: asyncio.Event) -> None:
    """
    Background loop that periodically re-applies stored rules to their clusters.

    Closes the gap left when a rule was stored but its cluster sync failed or the
    process stopped in between. Every apply is idempotent, so converged rules cause
    no writes.
    """
    interval = int(state.config.alert_resync_interval_sec)
    if interval <= 0:
        logger.info("Alert resync loop disabled")
        return
    logger.info("Alert resync loop started (interval=%ss)", interval)

    while not shutdown_event.is_set():
        tick_started = datetime.now(timezone.utc)
        try:
            synced, failed = await resync_tick(state)
            logger.info("Alert resync tick done (synced=%s, failed=%s)", synced, failed)
        except Exception:
            logger.exception("Alert resync tick failed")

        elapsed = (datetime.now(timezone.utc) - tick_started).total_seconds()
        sleep_for = max(1.0, interval - elapsed)
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=sleep_for)
        except asyncio.TimeoutError:
            pass

    logger.info("Alert resync loop stopped")
