"""Background maintenance of tiers and quota windows.

Two self-rearming jobs run next to the request path:
- tier refresh (default every 24h): pull the tier table from the tier source
  and overwrite the stored one; on failure keep serving the old table;
- counter reset (default every 1h): delete every counter, which starts a
  fresh quota window for all users.

Each job is a fire-once timer that schedules its successor when it finishes,
whatever the outcome (a cancelled job is not re-armed), so drift grows by
the job's own run time. The jobs touch disjoint documents and share no lock.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from app.adapters.stores.base import AbstractConfigStore, AbstractCounterStore
from app.adapters.tier_source.base import AbstractTierSource
from app.core.errors import AppError, ConfigRefreshError
from app.schemas.tiers import TIER_LIMITS_KEY

logger = logging.getLogger(__name__)

TIER_REFRESH_TASK = "tier-updater"
COUNTER_RESET_TASK = "rate-limit-resetter"

ACTIVATION_DEPLOY = "deploy"
ACTIVATION_RESUME = "resume"

TimerCallback = Callable[[], Awaitable[None]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AbstractTimer(ABC):
    """Fire-once timer primitive."""

    @abstractmethod
    def schedule_once(self, callback: TimerCallback, when: datetime, task_name: str) -> None:
        """Run callback once at when (UTC).

        Scheduling a name that is already pending replaces the pending run.
        """
        pass

    @abstractmethod
    def cancel_all(self) -> None:
        """Drop every pending run."""
        pass


class AsyncioTimer(AbstractTimer):
    """Timer backed by asyncio tasks on the running loop."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def pending(self) -> dict[str, asyncio.Task[None]]:
        return {name: task for name, task in self._tasks.items() if not task.done()}

    def schedule_once(self, callback: TimerCallback, when: datetime, task_name: str) -> None:
        delay = max(0.0, (when - self._clock()).total_seconds())

        existing = self._tasks.get(task_name)
        # A job re-arming itself runs inside the task being replaced
        if existing and not existing.done() and existing is not asyncio.current_task():
            existing.cancel()

        async def delayed_run() -> None:
            await asyncio.sleep(delay)
            try:
                await callback()
            except Exception as exc:
                logger.exception(
                    "scheduler.task_crashed",
                    extra={"task_name": task_name, "error_type": type(exc).__name__},
                )

        self._tasks[task_name] = asyncio.get_running_loop().create_task(
            delayed_run(), name=task_name
        )
        logger.info(
            "scheduler.task_armed",
            extra={"task_name": task_name, "fire_at": when.isoformat(), "delay_s": round(delay, 3)},
        )

    def cancel_all(self) -> None:
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        self._tasks.clear()


class QuotaScheduler:
    """Owns the tier refresh and counter reset jobs."""

    def __init__(
        self,
        *,
        config_store: AbstractConfigStore,
        counters: AbstractCounterStore,
        tier_source: AbstractTierSource,
        timer: AbstractTimer,
        tier_refresh_interval: timedelta = timedelta(hours=24),
        counter_reset_interval: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config_store
        self._counters = counters
        self._tier_source = tier_source
        self._timer = timer
        self._tier_refresh_interval = tier_refresh_interval
        self._counter_reset_interval = counter_reset_interval
        self._clock = clock

    async def activate(self, reason: str, *, arm_timers: bool = True) -> None:
        """Bring the gateway into service.

        Loads the tier table (failure aborts activation), wipes all counters
        on a fresh deploy, then arms both jobs.

        Args:
            reason: ``"deploy"`` for a fresh deployment, ``"resume"`` when
                restarting with existing state.
            arm_timers: Set False to skip the periodic jobs.

        Raises:
            ConfigRefreshError: If the tier source cannot be read.
            ValueError: If reason is unknown.
        """
        if reason not in (ACTIVATION_DEPLOY, ACTIVATION_RESUME):
            raise ValueError(f"unknown activation reason: {reason!r}")

        logger.info("scheduler.activation_started", extra={"reason": reason})

        tiers = await self._tier_source.fetch_tiers()
        await self._config.put(TIER_LIMITS_KEY, tiers)
        logger.info("scheduler.tiers_loaded", extra={"tier_count": len(tiers)})

        if reason == ACTIVATION_DEPLOY:
            removed = await self._counters.bulk_delete()
            logger.info("scheduler.bootstrap_reset", extra={"counters_removed": removed})

        if arm_timers:
            self._arm_tier_refresh()
            self._arm_counter_reset()

        logger.info("scheduler.activation_finished", extra={"reason": reason})

    def shutdown(self) -> None:
        self._timer.cancel_all()

    async def refresh_tiers(self) -> bool:
        """Replace the stored tier table with the tier source's.

        Returns:
            True if the table was replaced, False if the fetch failed and the
            previous table was kept.
        """
        try:
            tiers = await self._tier_source.fetch_tiers()
        except ConfigRefreshError as exc:
            logger.warning(
                "scheduler.tier_refresh.failed",
                extra={"error_code": exc.code, "error_message": exc.message},
            )
            return False

        await self._config.put(TIER_LIMITS_KEY, tiers)
        logger.info("scheduler.tier_refresh.succeeded", extra={"tier_count": len(tiers)})
        return True

    async def reset_counters(self) -> int:
        """Start a new quota window for every user."""
        removed = await self._counters.bulk_delete()
        logger.info("scheduler.counter_reset", extra={"counters_removed": removed})
        return removed

    # Jobs re-arm after any failure but not after cancellation, so shutdown
    # leaves nothing scheduled.
    async def _on_tier_refresh(self) -> None:
        try:
            await self.refresh_tiers()
        except AppError as exc:
            logger.error(
                "scheduler.tier_refresh.store_failed",
                extra={"error_code": exc.code, "error_message": exc.message},
            )
        except Exception:
            logger.exception("scheduler.tier_refresh.crashed")
        self._arm_tier_refresh()

    async def _on_counter_reset(self) -> None:
        try:
            await self.reset_counters()
        except AppError as exc:
            logger.error(
                "scheduler.counter_reset.failed",
                extra={"error_code": exc.code, "error_message": exc.message},
            )
        except Exception:
            logger.exception("scheduler.counter_reset.crashed")
        self._arm_counter_reset()

    def _arm_tier_refresh(self) -> None:
        self._timer.schedule_once(
            self._on_tier_refresh,
            self._clock() + self._tier_refresh_interval,
            TIER_REFRESH_TASK,
        )

    def _arm_counter_reset(self) -> None:
        self._timer.schedule_once(
            self._on_counter_reset,
            self._clock() + self._counter_reset_interval,
            COUNTER_RESET_TASK,
        )
