"""Ledger 门面测试

测试内容：
1. start/stop 的主动拒绝（已在运行、未运行、已停用）
2. 补录合并与 strict 模式
3. 撤销操作：remove_event / cancel_task / delete_session
4. 保存、重载与外部修改检测
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest
from chronos.core.exceptions import MutationRejected, PersistenceError
from chronos.core.ledger import Ledger
from chronos.core.models import EventKind, IssueKind
from conftest import T0, FakeClock, at


class TestStartStop:
    """计时"""

    def test_start_then_stop(self, clock: FakeClock, ledger: Ledger, make_task: Callable):
        task_id = make_task()
        started = ledger.start_task(task_id, note="focus")
        assert started.kind == EventKind.START
        assert ledger.snapshot.is_running(task_id)

        clock.advance(minutes=45)
        stopped = ledger.stop_task(task_id)
        assert stopped.sequence_no == started.sequence_no + 1
        assert not ledger.snapshot.is_running(task_id)
        assert ledger.snapshot.duration_for(task_id) == timedelta(minutes=45)

    def test_double_start_rejected(self, ledger: Ledger, make_task: Callable):
        """已在运行的任务再次 start 被拒绝，日志不变"""
        task_id = make_task()
        ledger.start_task(task_id)

        with pytest.raises(MutationRejected, match="already running"):
            ledger.start_task(task_id)
        assert len(ledger.events) == 1
        assert ledger.diagnostics == []

    def test_parallel_tasks_allowed(self, ledger: Ledger, make_task: Callable):
        a, b = make_task("A"), make_task("B")
        ledger.start_task(a)
        ledger.start_task(b)
        assert set(ledger.snapshot.active_sessions) == {a, b}

    def test_stop_idle_task_rejected(self, ledger: Ledger, make_task: Callable):
        task_id = make_task()
        with pytest.raises(MutationRejected, match="not running"):
            ledger.stop_task(task_id)
        assert len(ledger.events) == 0

    def test_unknown_task_rejected(self, ledger: Ledger):
        with pytest.raises(MutationRejected, match="task not found"):
            ledger.start_task("missing")
        with pytest.raises(MutationRejected, match="task not found"):
            ledger.stop_task("missing")

    def test_inactive_task_cannot_start(self, ledger: Ledger, make_task: Callable):
        task_id = make_task()
        ledger.deactivate_task(task_id)
        with pytest.raises(MutationRejected, match="inactive"):
            ledger.start_task(task_id)

        ledger.activate_task(task_id)
        ledger.start_task(task_id)
        assert ledger.snapshot.is_running(task_id)

    def test_stop_before_start_rejected(self, ledger: Ledger, make_task: Callable):
        task_id = make_task()
        ledger.start_task(task_id, at=at(2))
        with pytest.raises(MutationRejected, match="precedes"):
            ledger.stop_task(task_id, at=at(1))

    def test_naive_timestamp_rejected(self, ledger: Ledger, make_task: Callable):
        task_id = make_task()
        with pytest.raises(MutationRejected, match="UTC offset"):
            ledger.start_task(task_id, at=datetime(2026, 3, 2, 9, 0))

    def test_start_inside_closed_session_rejected(self, ledger: Ledger, make_task: Callable):
        """回溯的 start 落在已闭合会话内部会引入诊断，被拒绝"""
        task_id = make_task()
        ledger.manual_entry(task_id, at(-4), at(-1))
        with pytest.raises(MutationRejected, match="DOUBLE_START"):
            ledger.start_task(task_id, at=at(-2))
        assert len(ledger.events) == 2


class TestManualEntry:
    """补录"""

    def test_retroactive_entry_merged(self, ledger: Ledger, make_task: Callable):
        task_id = make_task()
        ledger.start_task(task_id, at=at(3))
        start_seq, stop_seq = ledger.manual_entry(task_id, at(0), at(1), note="offline")

        assert (start_seq, stop_seq) == (2, 3)
        assert ledger.snapshot.duration_for(task_id) == timedelta(hours=1)
        assert ledger.snapshot.is_running(task_id)
        assert ledger.diagnostics == []

    def test_conflicting_entry_merged_with_diagnostics(self, ledger: Ledger, make_task: Callable):
        task_id = make_task()
        ledger.manual_entry(task_id, at(0), at(4))

        preview = ledger.preview_manual_entry(task_id, at(1), at(2))
        assert {i.kind for i in preview} == {IssueKind.DOUBLE_START, IssueKind.UNMATCHED_STOP}
        # 预览不修改日志
        assert len(ledger.events) == 2

        ledger.manual_entry(task_id, at(1), at(2))
        assert {i.kind for i in ledger.diagnostics} == {
            IssueKind.DOUBLE_START,
            IssueKind.UNMATCHED_STOP,
        }

    def test_strict_entry_rejected_on_conflict(self, ledger: Ledger, make_task: Callable):
        task_id = make_task()
        ledger.manual_entry(task_id, at(0), at(4))
        with pytest.raises(MutationRejected, match="validation issues"):
            ledger.manual_entry(task_id, at(1), at(2), strict=True)
        assert len(ledger.events) == 2

    def test_strict_entry_accepted_without_conflict(self, ledger: Ledger, make_task: Callable):
        task_id = make_task()
        ledger.manual_entry(task_id, at(0), at(1))
        ledger.manual_entry(task_id, at(2), at(3), strict=True)
        assert ledger.snapshot.duration_for(task_id) == timedelta(hours=2)

    @pytest.mark.parametrize("stop_hours", [0, -1])
    def test_stop_must_follow_start(self, ledger: Ledger, make_task: Callable, stop_hours: float):
        task_id = make_task()
        with pytest.raises(MutationRejected, match="stop must be after start"):
            ledger.manual_entry(task_id, at(0), at(stop_hours))

    def test_unknown_task_rejected(self, ledger: Ledger):
        with pytest.raises(MutationRejected):
            ledger.manual_entry("missing", at(0), at(1))


class TestUndo:
    """撤销"""

    def test_cancel_running_task(self, ledger: Ledger, make_task: Callable):
        task_id = make_task()
        started = ledger.start_task(task_id)
        removed = ledger.cancel_task(task_id)

        assert removed == started
        assert not ledger.snapshot.is_running(task_id)
        assert len(ledger.events) == 0
        # 序号不回收
        assert ledger.start_task(task_id).sequence_no == 2

    def test_cancel_idle_task_rejected(self, ledger: Ledger, make_task: Callable):
        with pytest.raises(MutationRejected):
            ledger.cancel_task(make_task())

    def test_delete_session(self, ledger: Ledger, make_task: Callable):
        task_id = make_task()
        start_seq, stop_seq = ledger.manual_entry(task_id, at(0), at(1))
        ledger.manual_entry(task_id, at(2), at(3))

        start, stop = ledger.delete_session(start_seq)
        assert (start.sequence_no, stop.sequence_no) == (start_seq, stop_seq)
        assert ledger.snapshot.duration_for(task_id) == timedelta(hours=1)

    def test_delete_unknown_session_rejected(self, ledger: Ledger):
        with pytest.raises(MutationRejected, match="no closed session"):
            ledger.delete_session(99)

    def test_remove_event_surfaces_diagnostic(self, ledger: Ledger, make_task: Callable):
        task_id = make_task()
        start_seq, _ = ledger.manual_entry(task_id, at(0), at(1))
        ledger.remove_event(start_seq)
        assert [i.kind for i in ledger.diagnostics] == [IssueKind.UNMATCHED_STOP]

    def test_remove_missing_event_rejected(self, ledger: Ledger):
        with pytest.raises(MutationRejected):
            ledger.remove_event(1)


class TestEntities:
    """实体变更经由门面"""

    def test_rename_keeps_history(self, ledger: Ledger, make_task: Callable):
        task_id = make_task("Old name")
        ledger.manual_entry(task_id, at(0), at(1))
        ledger.rename_task(task_id, "New name\ndetails")

        assert ledger.task(task_id).title == "New name"
        assert ledger.snapshot.duration_for(task_id) == timedelta(hours=1)

    def test_new_task_has_zero_duration(self, ledger: Ledger, make_task: Callable):
        task_id = make_task()
        assert ledger.snapshot.accumulated_duration[task_id] == timedelta(0)
        assert ledger.task(task_id).created_at == T0

    def test_project_and_category_updates(self, ledger: Ledger):
        project = ledger.create_project("Acme", "red")
        category = ledger.create_category("Meetings")
        assert ledger.update_project(project.id, name="Acme Inc").color == "red"
        assert ledger.deactivate_project(project.id).active is False
        assert ledger.activate_project(project.id).active is True
        assert ledger.update_category(category.id, description="sync calls").name == "Meetings"
        assert ledger.deactivate_category(category.id).active is False
        assert ledger.activate_category(category.id).active is True

    def test_reassign_task_project(self, ledger: Ledger, make_task: Callable):
        task_id = make_task()
        other = ledger.create_project("Other")
        assert ledger.update_task(task_id, project_id=other.id).project_id == other.id

    def test_recent_events_newest_first(self, ledger: Ledger, make_task: Callable):
        task_id = make_task()
        ledger.manual_entry(task_id, at(5), at(6))
        ledger.manual_entry(task_id, at(0), at(1))
        assert [e.sequence_no for e in ledger.recent_events(3)] == [2, 1, 4]


class TestPersistence:
    """保存与重载"""

    def test_save_and_reopen(self, clock: FakeClock, ledger_path: Path):
        ledger = Ledger.new(ledger_path, clock=clock)
        project = ledger.create_project("Acme")
        task = ledger.create_task(project.id, "Write report")
        ledger.manual_entry(task.id, at(0), at(1))
        ledger.start_task(task.id, at=at(2))
        ledger.save()

        reopened = Ledger.open(ledger_path, clock=clock)
        assert reopened.snapshot == ledger.snapshot
        assert reopened.created_at == ledger.created_at
        assert reopened.events.next_sequence_no == ledger.events.next_sequence_no
        assert reopened.entities.tasks == ledger.entities.tasks

    def test_open_missing_file_is_empty(self, ledger_path: Path):
        ledger = Ledger.open(ledger_path)
        assert ledger.entities.tasks == []
        assert not ledger_path.exists()

    def test_save_without_path_fails(self, ledger: Ledger):
        with pytest.raises(PersistenceError):
            ledger.save()

    def test_loaded_ids_not_reissued(self, clock: FakeClock, ledger_path: Path):
        ledger = Ledger.new(ledger_path, clock=clock)
        project = ledger.create_project("Acme")
        ledger.save()

        reopened = Ledger.open(ledger_path, clock=clock)
        assert reopened.create_project("Other").id != project.id

    def test_external_change_detected(self, clock: FakeClock, ledger_path: Path):
        ledger = Ledger.new(ledger_path, clock=clock)
        ledger.create_project("Acme")
        ledger.save()
        assert ledger.has_external_changes() is False

        other = Ledger.open(ledger_path, clock=clock)
        other.create_project("Synced from laptop")
        other.save()

        assert ledger.has_external_changes() is True
        with pytest.raises(PersistenceError, match="changed on disk"):
            ledger.save()

        assert ledger.reload_if_changed() is True
        assert [p.name for p in ledger.entities.projects] == ["Acme", "Synced from laptop"]
        assert ledger.reload_if_changed() is False
        ledger.save()

    def test_corrupt_header_surfaces_location(self, ledger_path: Path):
        ledger_path.write_text("{ not json\n=== EVENTS ===\n", encoding="utf-8")
        with pytest.raises(PersistenceError) as exc_info:
            Ledger.open(ledger_path)
        assert str(ledger_path) in str(exc_info.value)

    def test_malformed_event_line_does_not_lose_ledger(self, clock: FakeClock, ledger_path: Path):
        ledger = Ledger.new(ledger_path, clock=clock)
        task = ledger.create_task(ledger.create_project("Acme").id, "Write")
        ledger.manual_entry(task.id, at(0), at(1))
        ledger.save()
        with ledger_path.open("a", encoding="utf-8") as fh:
            fh.write("garbage line\n")

        reopened = Ledger.open(ledger_path, clock=clock)
        assert reopened.snapshot.duration_for(task.id) == timedelta(hours=1)
        assert [i.kind for i in reopened.diagnostics] == [IssueKind.MALFORMED_EVENT_LINE]

    def test_today_uses_ledger_timezone(self, clock: FakeClock):
        clock.current = T0.replace(hour=23, minute=30)
        ledger = Ledger.new(clock=clock, tz=ZoneInfo("Europe/Berlin"))
        assert ledger.today() == (T0 + timedelta(days=1)).date()
