"""OpenWatch Hub - stores, module management and analytics operations."""

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from openwatch.hub.constants import EVENT_PARAMETERS_UPDATED
from openwatch.hub.settings import PredictionParameters, SettingsStore
from openwatch.shared.event_store import TransitionEventStore
from openwatch.shared.models import Session, TransitionEvent, WeekdayPrediction
from openwatch.shared.predictor import lookback_cutoff, predict_next_transition, predict_week
from openwatch.shared.sessions import build_sessions, group_raw_history

logger = logging.getLogger(__name__)


class Module:
    """Base class for hub modules."""

    def __init__(self, module_id: str, hub: "MonitorHub"):
        self.module_id = module_id
        self.hub = hub
        self.logger = logging.getLogger(f"module.{module_id}")

    async def initialize(self):
        """Initialize module resources."""
        pass

    async def shutdown(self):
        """Cleanup module resources."""
        pass

    async def on_event(self, event_type: str, data: dict[str, Any]):
        """Handle hub event.

        Args:
            event_type: Type of event (e.g., "transition", "parameters_updated")
            data: Event data
        """
        pass

    async def on_parameters_updated(self, params: PredictionParameters):
        """Called after the prediction parameters were replaced via the API.

        The default implementation is a no-op so modules that do not care
        about runtime parameter changes do not need to implement this.
        """
        pass


class MonitorHub:
    """Central hub owning the stores, modules and the event bus.

    Every analytics read goes straight to the stores; sessions and
    predictions are rebuilt from the raw event log on each call so a
    monitor write or a parameter update is visible to the next read.
    """

    def __init__(self, settings_path: str, events_path: str | None = None, clock: Callable[[], datetime] | None = None):
        """Initialize the hub.

        Args:
            settings_path: Path to the SQLite database holding the parameters
            events_path: Path to the event log database (default: events.db next to settings_path)
            clock: Returns local "now"; injectable for tests
        """
        self.settings = SettingsStore(settings_path)
        if events_path is None:
            events_path = str(Path(settings_path).parent / "events.db")
        self.event_store = TransitionEventStore(events_path)
        self.clock = clock or datetime.now
        self.modules: dict[str, Module] = {}
        self.module_status: dict[str, str] = {}  # module_id -> "running" | "failed"
        self.subscribers: dict[str, set[Callable]] = {}
        self.tasks: set[asyncio.Task] = set()
        self._running = False
        self._start_time: datetime | None = None
        self._request_count: int = 0
        self.logger = logging.getLogger("hub")

    async def initialize(self):
        """Open both stores."""
        self.logger.info("Initializing OpenWatch Hub...")
        await self.settings.initialize()
        await self.event_store.initialize()
        self._running = True
        self._start_time = datetime.now(tz=UTC)
        self.logger.info("Hub initialized successfully")

    async def shutdown(self):
        """Shutdown modules, cancel tasks and close the stores."""
        self.logger.info("Shutting down OpenWatch Hub...")
        self._running = False

        for module_id, module in self.modules.items():
            self.logger.info(f"Shutting down module: {module_id}")
            try:
                await module.shutdown()
            except Exception as e:
                self.logger.error(f"Error shutting down module {module_id}: {e}")

        for task in self.tasks:
            if not task.done():
                task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)

        try:
            await self.event_store.close()
        except Exception as e:
            self.logger.error(f"Error closing event store: {e}")
        await self.settings.close()
        self.logger.info("Hub shutdown complete")

    # ── Modules and event bus ───────────────────────────────────────────

    def register_module(self, module: Module):
        """Register a module with the hub.

        Raises:
            ValueError: If a module with the same id is already registered.
        """
        if module.module_id in self.modules:
            raise ValueError(f"Module {module.module_id} already registered")
        self.modules[module.module_id] = module
        self.module_status[module.module_id] = "registered"
        self.logger.info(f"Registered module: {module.module_id}")

    def get_module(self, module_id: str) -> Module | None:
        return self.modules.get(module_id)

    def mark_module_running(self, module_id: str):
        self.module_status[module_id] = "running"

    def mark_module_failed(self, module_id: str):
        self.module_status[module_id] = "failed"

    def subscribe(self, event_type: str, callback: Callable):
        """Subscribe an async callback to a hub event type."""
        self.subscribers.setdefault(event_type, set()).add(callback)
        self.logger.debug(f"Subscribed to event: {event_type}")

    def unsubscribe(self, event_type: str, callback: Callable):
        if event_type in self.subscribers:
            self.subscribers[event_type].discard(callback)

    async def publish(self, event_type: str, data: dict[str, Any]):
        """Dispatch an event to explicit subscribers, then to every module's on_event().

        Callback errors are logged and never propagate to the publisher.
        Logs a warning if total dispatch takes longer than 100 ms.
        """
        self.logger.debug(f"Publishing event: {event_type}")
        dispatch_start = time.monotonic()

        for callback in list(self.subscribers.get(event_type, ())):
            try:
                await callback(data)
            except Exception as e:
                self.logger.error(f"Error in event callback: {e}")

        for module in self.modules.values():
            try:
                await module.on_event(event_type, data)
            except Exception as e:
                self.logger.error(f"Error in module {module.module_id} event handler: {e}")

        total_elapsed_ms = (time.monotonic() - dispatch_start) * 1000
        if total_elapsed_ms > 100:
            self.logger.warning(
                "Event '%s' dispatch took %.1f ms (threshold 100 ms)",
                event_type,
                total_elapsed_ms,
            )

    async def schedule_task(
        self, task_id: str, coro: Callable, interval: timedelta | None = None, run_immediately: bool = True
    ):
        """Schedule a task to run periodically.

        Args:
            task_id: Unique task identifier
            coro: Async coroutine to run
            interval: Run interval (None = run once)
            run_immediately: If True, run immediately then schedule
        """

        async def run_task():
            if run_immediately:
                try:
                    await coro()
                except Exception as e:
                    self.logger.error(f"Task {task_id} error: {e}")

            if interval:
                while self._running:
                    await asyncio.sleep(interval.total_seconds())
                    try:
                        await coro()
                    except Exception as e:
                        self.logger.error(f"Task {task_id} error: {e}")

        task = asyncio.create_task(run_task())
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

        self.logger.info(f"Scheduled task: {task_id}" + (f" (interval: {interval})" if interval else " (one-time)"))

    # ── Parameters ──────────────────────────────────────────────────────

    async def get_parameters(self) -> PredictionParameters:
        return await self.settings.get()

    async def update_parameters(self, changes: dict[str, Any]) -> PredictionParameters:
        """Merge, validate and persist a parameter update, then notify modules.

        Raises:
            ParameterValidationError: If the merged record is invalid.
        """
        params = await self.settings.update(changes)
        await self._parameters_changed(params)
        return params

    async def reset_parameters(self) -> PredictionParameters:
        params = await self.settings.reset()
        await self._parameters_changed(params)
        return params

    async def _parameters_changed(self, params: PredictionParameters):
        self.logger.info("Prediction parameters updated")
        for module_id, module in self.modules.items():
            try:
                await module.on_parameters_updated(params)
            except Exception as exc:
                self.logger.error("Error in module %s on_parameters_updated: %s", module_id, exc)
        await self.publish(EVENT_PARAMETERS_UPDATED, {"parameters": params.to_dict()})

    # ── Event log ───────────────────────────────────────────────────────

    def _days_cutoff(self, days: int) -> str:
        return (self.clock().date() - timedelta(days=days)).isoformat()

    async def get_logs(self, days: int) -> list[TransitionEvent]:
        """Raw events of the last ``days`` days in chronological order."""
        return await self.event_store.query_since(self._days_cutoff(days))

    async def add_log(self, date_key: str, time_of_day: str, is_opening: bool) -> TransitionEvent:
        """Manually insert an event (dashboard corrections and testing)."""
        event = await self.event_store.append(date_key, time_of_day, is_opening)
        self.logger.info(
            "Manual event added: %s %s %s", date_key, time_of_day, "open" if is_opening else "close"
        )
        return event

    async def delete_log(self, event_id: int) -> TransitionEvent | None:
        """Delete one event. Returns the removed event, or None if the id is unknown."""
        event = await self.event_store.get(event_id)
        if event is None or not await self.event_store.delete(event_id):
            return None
        self.logger.info("Event %d deleted (%s %s)", event_id, event.date_key, event.time_of_day)
        return event

    async def prune_logs(self, max_days: int) -> int:
        """Delete events older than ``max_days`` days."""
        pruned = await self.event_store.prune_before(self._days_cutoff(max_days))
        if pruned:
            self.logger.info("Pruned %d old events (older than %d days)", pruned, max_days)
        return pruned

    async def get_stats(self) -> dict[str, Any]:
        return await self.event_store.stats()

    # ── Sessions and predictions ────────────────────────────────────────

    async def get_sessions(self, days: int, min_duration: int | None = None) -> dict[str, Session]:
        """Reconstructed sessions of the last ``days`` days.

        ``min_duration`` defaults to the current min_session_duration_minutes.
        """
        if min_duration is None:
            min_duration = (await self.settings.get()).min_session_duration_minutes
        events = await self.event_store.query_since(self._days_cutoff(days))
        return build_sessions(events, min_duration)

    async def get_history(self, days: int | None = None) -> dict[str, dict[str, list[str]]]:
        """Unfiltered per-day open/close times, newest first."""
        if days is None:
            days = (await self.settings.get()).history_limit_days
        events = await self.event_store.query_since(self._days_cutoff(days))
        return group_raw_history(events)

    async def _lookback_sessions(self, params: PredictionParameters) -> list[Session]:
        today = self.clock().date()
        cutoff = lookback_cutoff(today, params.lookback_months).isoformat()
        events = await self.event_store.query_since(cutoff)
        return list(build_sessions(events, params.min_session_duration_minutes).values())

    async def get_predictions(self) -> dict[int, WeekdayPrediction]:
        """Weighted-median predictions for all seven weekdays."""
        params = await self.settings.get()
        sessions = await self._lookback_sessions(params)
        return predict_week(sessions, params, self.clock().date())

    async def predict_next(self, is_open: bool) -> str | None:
        """Typical time (HH:MM) of the next flip away from ``is_open``."""
        params = await self.settings.get()
        sessions = await self._lookback_sessions(params)
        return predict_next_transition(sessions, is_open, params, self.clock())

    # ── Health ──────────────────────────────────────────────────────────

    def is_running(self) -> bool:
        return self._running

    def get_uptime_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        return (datetime.now(tz=UTC) - self._start_time).total_seconds()

    async def health_check(self) -> dict[str, Any]:
        """Hub and module status plus event counts."""
        return {
            "status": "ok" if self._running else "stopped",
            "uptime_seconds": round(self.get_uptime_seconds()),
            "modules": {module_id: self.module_status.get(module_id, "unknown") for module_id in self.modules},
            "events": await self.event_store.stats(),
            "timestamp": datetime.now(tz=UTC).isoformat(),
        }
