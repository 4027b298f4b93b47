import json
import os
from pathlib import Path

import pytest

from terrafarm.exceptions import StateCorruptedError, StateNotFoundError
from terrafarm.preferences import Preferences
from terrafarm.state import FarmState, MonitorState, StateStore, pid_alive

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


class TestMonitorState:
    def test_destroy_not_later(self):
        assert MonitorState(pid=1, started=0, destroy_after=100, max_wait=30).destroy_not_later == 130

    def test_prolonged_moves_forward(self):
        state = MonitorState(pid=1, started=0, destroy_after=100)
        assert state.prolonged(60).destroy_after == 160

    def test_prolonged_never_moves_back(self):
        state = MonitorState(pid=1, started=0, destroy_after=100)
        assert state.prolonged(-60).destroy_after == 100

    def test_deadline_monotonic_over_many_deltas(self):
        state = MonitorState(pid=1, started=0, destroy_after=1_000)
        deadlines = [state.destroy_after]
        for delta in (60, -3600, 0, 1, 600, -1, 86400):
            state = state.prolonged(delta)
            deadlines.append(state.destroy_after)
        assert deadlines == sorted(deadlines)


class TestStore:
    def test_monitor_state_round_trip(self, store: StateStore):
        state = MonitorState(pid=42, started=1000, destroy_after=4600, max_wait=1800)
        store.save_monitor_state(state)
        assert store.read_monitor_state() == state

    def test_zero_max_wait_round_trip(self, store: StateStore):
        state = MonitorState(pid=42, started=1000, destroy_after=4600, max_wait=0)
        store.save_monitor_state(state)
        assert store.read_monitor_state().max_wait == 0

    def test_monitor_state_without_max_wait(self, store: StateStore):
        store.monitor_state_file.write_text(json.dumps({"pid": 1, "started": 2, "destroy_after": 3}))
        assert store.read_monitor_state().max_wait == 0

    def test_farm_state_round_trip(self, store: StateStore, prefs: Preferences):
        state = FarmState(preferences=prefs.redacted(), started=1234)
        store.save_farm_state(state)

        loaded = store.read_farm_state()

        assert loaded == state
        assert loaded.preferences.password == ""

    def test_missing_file(self, store: StateStore):
        with pytest.raises(StateNotFoundError):
            store.read_monitor_state()
        with pytest.raises(StateNotFoundError):
            store.read_farm_state()

    @pytest.mark.parametrize("content", ["{not json", "[]", '{"pid": "abc"}'])
    def test_malformed_file(self, store: StateStore, content: str):
        store.monitor_state_file.write_text(content)
        with pytest.raises(StateCorruptedError):
            store.read_monitor_state()

    def test_save_replaces_whole_file(self, store: StateStore):
        store.monitor_state_file.write_text(json.dumps({"garbage": "x" * 10_000}))
        store.save_monitor_state(MonitorState(pid=1, started=2, destroy_after=3))

        assert json.loads(store.monitor_state_file.read_text()) == {
            "pid": 1,
            "started": 2,
            "destroy_after": 3,
            "max_wait": 0,
        }

    def test_save_leaves_no_temp_files(self, store: StateStore, data_dir: Path):
        before = set(data_dir.iterdir())
        store.save_monitor_state(MonitorState(pid=1, started=2, destroy_after=3))
        assert set(data_dir.iterdir()) - before == {store.monitor_state_file}

    def test_state_files_are_private(self, store: StateStore):
        store.save_monitor_state(MonitorState(pid=1, started=2, destroy_after=3))
        assert store.monitor_state_file.stat().st_mode & 0o777 == 0o600

    def test_delete_is_idempotent(self, store: StateStore):
        store.save_monitor_state(MonitorState(pid=1, started=2, destroy_after=3))
        store.delete_monitor_state()
        store.delete_monitor_state()
        store.delete_farm_state()
        assert not store.monitor_state_file.exists()


class TestMonitorActive:
    def test_live_pid(self, store: StateStore):
        store.save_monitor_state(MonitorState(pid=os.getpid(), started=0, destroy_after=0))
        assert store.is_monitor_active()

    def test_no_state(self, store: StateStore):
        assert not store.is_monitor_active()

    def test_corrupted_state(self, store: StateStore):
        store.monitor_state_file.write_text("{")
        assert not store.is_monitor_active()

    def test_invalid_pid(self):
        assert not pid_alive(0)
        assert not pid_alive(-5)
