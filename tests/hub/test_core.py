"""Tests for openwatch.hub.core — MonitorHub lifecycle, event bus and analytics."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from openwatch.errors import ParameterValidationError
from openwatch.hub.constants import EVENT_PARAMETERS_UPDATED
from openwatch.hub.core import Module, MonitorHub


class RecordingModule(Module):
    def __init__(self, hub, module_id="recorder"):
        super().__init__(module_id, hub)
        self.events = []
        self.param_updates = []

    async def on_event(self, event_type, data):
        self.events.append((event_type, data))

    async def on_parameters_updated(self, params):
        self.param_updates.append(params)


async def _seed_week(hub):
    """Two Fridays and one Saturday of activity around the pinned clock."""
    await hub.add_log("2024-03-08", "09:00", True)
    await hub.add_log("2024-03-08", "17:30", False)
    await hub.add_log("2024-03-09", "10:00", True)
    await hub.add_log("2024-03-09", "14:00", False)
    await hub.add_log("2024-03-01", "08:00", True)
    await hub.add_log("2024-03-01", "08:10", False)


# ── Lifecycle ───────────────────────────────────────────────────────────


class TestLifecycle:
    async def test_events_db_defaults_next_to_settings(self, tmp_path):
        h = MonitorHub(str(tmp_path / "hub.db"))
        assert h.event_store.db_path == str(tmp_path / "events.db")

    async def test_initialize_and_shutdown(self, hub):
        assert hub.is_running()
        await hub.shutdown()
        assert not hub.is_running()

    async def test_shutdown_calls_module_shutdown(self, hub):
        module = RecordingModule(hub)
        module.shutdown = AsyncMock()
        hub.register_module(module)
        await hub.shutdown()
        module.shutdown.assert_awaited_once()

    async def test_health_check(self, hub):
        hub.register_module(RecordingModule(hub))
        hub.mark_module_running("recorder")
        await hub.add_log("2024-03-08", "09:00", True)

        health = await hub.health_check()
        assert health["status"] == "ok"
        assert health["modules"] == {"recorder": "running"}
        assert health["events"]["total_events"] == 1


# ── Modules and event bus ───────────────────────────────────────────────


class TestEventBus:
    async def test_duplicate_module_rejected(self, hub):
        hub.register_module(RecordingModule(hub))
        with pytest.raises(ValueError, match="already registered"):
            hub.register_module(RecordingModule(hub))

    async def test_publish_reaches_subscribers_and_modules(self, hub):
        module = RecordingModule(hub)
        hub.register_module(module)
        callback = AsyncMock()
        hub.subscribe("transition", callback)

        await hub.publish("transition", {"open": True})

        callback.assert_awaited_once_with({"open": True})
        assert module.events == [("transition", {"open": True})]

    async def test_failing_callback_does_not_propagate(self, hub):
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        healthy = AsyncMock()
        hub.subscribe("transition", failing)
        hub.subscribe("transition", healthy)

        await hub.publish("transition", {})
        healthy.assert_awaited_once()

    async def test_unsubscribe(self, hub):
        callback = AsyncMock()
        hub.subscribe("transition", callback)
        hub.unsubscribe("transition", callback)
        await hub.publish("transition", {})
        callback.assert_not_awaited()

    async def test_schedule_task_one_time(self, hub):
        ran = asyncio.Event()

        async def job():
            ran.set()

        await hub.schedule_task("job", job)
        await asyncio.wait_for(ran.wait(), timeout=1)


# ── Parameters ──────────────────────────────────────────────────────────


class TestParameters:
    async def test_update_notifies_modules_and_subscribers(self, hub):
        """A successful update reaches every module and the parameters_updated event."""
        module = RecordingModule(hub)
        hub.register_module(module)
        callback = AsyncMock()
        hub.subscribe(EVENT_PARAMETERS_UPDATED, callback)

        params = await hub.update_parameters({"poll_interval_open_ms": 120000})

        assert params.poll_interval_open_ms == 120000
        assert module.param_updates == [params]
        callback.assert_awaited_once()
        assert callback.call_args[0][0]["parameters"]["poll_interval_open_ms"] == 120000

    async def test_invalid_update_notifies_nobody(self, hub):
        module = RecordingModule(hub)
        hub.register_module(module)

        with pytest.raises(ParameterValidationError):
            await hub.update_parameters({"night_start_hour": 99})

        assert module.param_updates == []
        assert (await hub.get_parameters()).night_start_hour == 22

    async def test_reset(self, hub):
        await hub.update_parameters({"lookback_months": 12})
        params = await hub.reset_parameters()
        assert params.lookback_months == 4


# ── Event log ───────────────────────────────────────────────────────────


class TestEventLog:
    async def test_get_logs_respects_days(self, hub):
        """Only events on or after clock date minus N days are returned."""
        await _seed_week(hub)
        logs = await hub.get_logs(7)
        assert {e.date_key for e in logs} == {"2024-03-08", "2024-03-09"}

    async def test_delete_log(self, hub):
        event = await hub.add_log("2024-03-08", "09:00", True)
        removed = await hub.delete_log(event.id)
        assert removed == event
        assert await hub.delete_log(event.id) is None
        assert await hub.event_store.total_count() == 0

    async def test_prune_logs(self, hub):
        await _seed_week(hub)
        pruned = await hub.prune_logs(10)
        assert pruned == 2
        stats = await hub.get_stats()
        assert stats["first_date"] == "2024-03-08"


# ── Sessions and predictions ────────────────────────────────────────────


class TestAnalytics:
    async def test_sessions_use_stored_min_duration(self, hub):
        await _seed_week(hub)
        sessions = await hub.get_sessions(30)
        assert set(sessions) == {"2024-03-08", "2024-03-09"}

        sessions = await hub.get_sessions(30, min_duration=5)
        assert "2024-03-01" in sessions

    async def test_history_keeps_short_blips(self, hub):
        await _seed_week(hub)
        history = await hub.get_history()
        assert list(history) == ["2024-03-09", "2024-03-08", "2024-03-01"]
        assert history["2024-03-01"] == {"open_times": ["08:00"], "close_times": ["08:10"]}

    async def test_predictions(self, hub):
        await _seed_week(hub)
        predictions = await hub.get_predictions()
        assert set(predictions) == set(range(7))
        friday = predictions[5]
        assert friday.open_time == 540
        assert friday.close_time == 1050
        assert friday.data_points == 1

    async def test_new_event_visible_to_next_prediction(self, hub):
        """Predictions are rebuilt on each call, never served stale."""
        await _seed_week(hub)
        await hub.add_log("2024-03-15", "09:00", True)
        await hub.add_log("2024-03-15", "18:30", False)

        friday = (await hub.get_predictions())[5]
        assert friday.data_points == 2
        assert friday.close_time == (1050 + 1110) / 2

    async def test_parameter_change_visible_to_next_prediction(self, hub):
        await _seed_week(hub)
        await hub.update_parameters({"min_session_duration_minutes": 300})
        predictions = await hub.get_predictions()
        # Saturday's 4-hour session no longer qualifies
        assert predictions[6].data_points == 0
        assert predictions[5].data_points == 1

    async def test_predict_next(self, hub):
        await _seed_week(hub)
        assert await hub.predict_next(True) == "17:30"
        assert await hub.predict_next(False) == "10:00"
