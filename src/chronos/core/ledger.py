"""Ledger -- 加载/变更/保存的统一入口

每次变更后立即重算 Derived Snapshot，调用方永远看不到过期快照。
快照只属于 Ledger 实例，没有后台刷新。

变更被拒绝时抛出 MutationRejected，且 Ledger 状态不变。
"""

import time
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta, tzinfo
from pathlib import Path
from typing import NoReturn, TypeVar

import structlog

from .aggregate import aggregate, sessions_for_day, start_of_week, week_stats
from .exceptions import MutationRejected, PersistenceError
from .models.entities import Category, Project, Task
from .models.enums import EventKind
from .models.event import TimeEvent
from .models.snapshot import DerivedSnapshot, ValidationIssue
from .models.summary import DaySession, Summary, WeekStats
from .replay import replay
from .store.entity_store import UNSET, EntityStore
from .store.event_log import EventLog
from .store.ledger_file import (
    file_fingerprint,
    load_ledger_file,
    save_ledger_file,
)

log = structlog.get_logger()

T = TypeVar("T")

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class Ledger:
    """时间账本"""

    def __init__(
        self,
        entities: EntityStore | None = None,
        events: EventLog | None = None,
        path: Path | None = None,
        created_at: datetime | None = None,
        clock: Clock = _utc_now,
        tz: tzinfo = UTC,
    ) -> None:
        """
        Args:
            entities: 实体存储
            events: 事件日志
            path: Ledger 文件路径，None 表示纯内存
            created_at: Ledger 创建时间
            clock: 当前时间来源（必须返回带时区的时间）
            tz: 按本地午夜汇总所用的时区
        """
        self.path = path
        self.tz = tz
        self._clock = clock
        self._entities = entities if entities is not None else EntityStore()
        self._events = events if events is not None else EventLog()
        self._created_at = created_at or clock()
        self._fingerprint: tuple[int, int] | None = None
        self._snapshot = replay(self._entities, self._events)

    # ------------------------------------------------------------------
    # 加载 / 保存
    # ------------------------------------------------------------------

    @classmethod
    def new(
        cls,
        path: Path | None = None,
        clock: Clock = _utc_now,
        tz: tzinfo = UTC,
    ) -> "Ledger":
        return cls(path=path, clock=clock, tz=tz)

    @classmethod
    def open(cls, path: Path, clock: Clock = _utc_now, tz: tzinfo = UTC) -> "Ledger":
        """从文件加载；文件不存在或为空时得到空 Ledger

        Raises:
            PersistenceError: 文件不可读或头部损坏
        """
        ledger = cls(path=path, clock=clock, tz=tz)
        ledger.reload()
        return ledger

    def reload(self) -> None:
        """丢弃内存状态，从磁盘重建并重算快照"""
        if self.path is None:
            raise PersistenceError("ledger has no backing file")

        start_time = time.monotonic()
        fingerprint = file_fingerprint(self.path)
        document = load_ledger_file(self.path)
        try:
            entities = EntityStore.from_header(document.header)
        except PersistenceError as e:
            raise PersistenceError(str(e), path=self.path) from e

        self._entities = entities
        self._events = document.events
        self._created_at = document.header.created_at
        self._fingerprint = fingerprint
        self._recompute()

        log.info(
            "ledger_loaded",
            path=str(self.path),
            task_count=len(entities.tasks),
            event_count=len(self._events),
            issue_count=len(self._snapshot.diagnostics),
            elapsed_ms=int((time.monotonic() - start_time) * 1000),
        )

    def has_external_changes(self) -> bool:
        """文件自上次加载/保存后是否被外部修改"""
        if self.path is None:
            return False
        return file_fingerprint(self.path) != self._fingerprint

    def reload_if_changed(self) -> bool:
        """检测到外部修改时重新加载，返回是否发生了重载"""
        if not self.has_external_changes():
            return False
        log.info("ledger_changed_externally", path=str(self.path))
        self.reload()
        return True

    def save(self) -> None:
        """写回文件

        Raises:
            PersistenceError: 没有文件路径、文件被外部修改或写入失败
        """
        if self.path is None:
            raise PersistenceError("ledger has no backing file")
        if self.has_external_changes():
            raise PersistenceError(
                "ledger file changed on disk since it was loaded; reload first",
                path=self.path,
            )

        header = self._entities.to_header(self._created_at)
        save_ledger_file(self.path, header, self._events)
        self._fingerprint = file_fingerprint(self.path)
        log.info("ledger_saved", path=str(self.path), event_count=len(self._events))

    # ------------------------------------------------------------------
    # 读取
    # ------------------------------------------------------------------

    @property
    def entities(self) -> EntityStore:
        return self._entities

    @property
    def events(self) -> EventLog:
        return self._events

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def snapshot(self) -> DerivedSnapshot:
        return self._snapshot

    @property
    def diagnostics(self) -> list[ValidationIssue]:
        return self._snapshot.diagnostics

    def project(self, project_id: str) -> Project | None:
        return self._entities.project(project_id)

    def category(self, category_id: str) -> Category | None:
        return self._entities.category(category_id)

    def task(self, task_id: str) -> Task | None:
        return self._entities.task(task_id)

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return self._clock().astimezone(self.tz).date()

    def summary(
        self,
        since: date | None = None,
        until: date | None = None,
        include_running: bool = False,
    ) -> Summary:
        """汇总；include_running 为 True 时运行中会话计到当前时间"""
        now = self._clock() if include_running else None
        return aggregate(self._snapshot, self._entities, self.tz, now, since, until)

    def week_stats(self, day: date | None = None, include_running: bool = False) -> WeekStats:
        day = day or self.today()
        week_start = start_of_week(day)
        summary = self.summary(
            since=week_start,
            until=week_start + timedelta(days=6),
            include_running=include_running,
        )
        return week_stats(summary, self._entities, day)

    def sessions_for_day(
        self,
        day: date | None = None,
        include_running: bool = True,
    ) -> list[DaySession]:
        now = self._clock() if include_running else None
        return sessions_for_day(
            self._snapshot, self._entities, day or self.today(), self.tz, now
        )

    def recent_events(self, limit: int = 20) -> list[TimeEvent]:
        """按规范顺序最新的 limit 条事件，最新在前"""
        return list(reversed(self._events.ordered()))[:limit]

    # ------------------------------------------------------------------
    # 实体变更
    # ------------------------------------------------------------------

    def create_project(self, name: str, color: str | None = None) -> Project:
        project = self._mutate(lambda: self._entities.create_project(name, color))
        log.info("project_created", project_id=project.id)
        return project

    def update_project(
        self,
        project_id: str,
        name: str | None = None,
        color: str | None = UNSET,
    ) -> Project:
        return self._mutate(lambda: self._entities.update_project(project_id, name, color))

    def activate_project(self, project_id: str) -> Project:
        return self._mutate(lambda: self._entities.set_project_active(project_id, True))

    def deactivate_project(self, project_id: str) -> Project:
        return self._mutate(lambda: self._entities.set_project_active(project_id, False))

    def create_category(self, name: str, description: str | None = None) -> Category:
        category = self._mutate(lambda: self._entities.create_category(name, description))
        log.info("category_created", category_id=category.id)
        return category

    def update_category(
        self,
        category_id: str,
        name: str | None = None,
        description: str | None = UNSET,
    ) -> Category:
        return self._mutate(
            lambda: self._entities.update_category(category_id, name, description)
        )

    def activate_category(self, category_id: str) -> Category:
        return self._mutate(lambda: self._entities.set_category_active(category_id, True))

    def deactivate_category(self, category_id: str) -> Category:
        return self._mutate(lambda: self._entities.set_category_active(category_id, False))

    def create_task(
        self,
        project_id: str,
        description: str,
        category_id: str | None = None,
    ) -> Task:
        task = self._mutate(
            lambda: self._entities.create_task(
                project_id, description, self._clock(), category_id
            )
        )
        log.info("task_created", task_id=task.id, project_id=project_id)
        return task

    def update_task(
        self,
        task_id: str,
        description: str | None = None,
        project_id: str | None = None,
        category_id: str | None = UNSET,
    ) -> Task:
        return self._mutate(
            lambda: self._entities.update_task(task_id, description, project_id, category_id)
        )

    def rename_task(self, task_id: str, description: str) -> Task:
        return self.update_task(task_id, description=description)

    def activate_task(self, task_id: str) -> Task:
        return self._mutate(lambda: self._entities.set_task_active(task_id, True))

    def deactivate_task(self, task_id: str) -> Task:
        return self._mutate(lambda: self._entities.set_task_active(task_id, False))

    # ------------------------------------------------------------------
    # 事件变更
    # ------------------------------------------------------------------

    def start_task(
        self,
        task_id: str,
        at: datetime | None = None,
        note: str | None = None,
    ) -> TimeEvent:
        """开始计时

        Raises:
            MutationRejected: 任务不存在、已停用、已在运行，
                或该时间点会与该任务已有区间冲突
        """
        task = self._entities.task(task_id)
        if task is None:
            self._reject(f"task not found: {task_id}")
        if not task.active:
            self._reject(f"task is inactive: {task_id}")
        if self._snapshot.is_running(task_id):
            self._reject(f"task already running: {task_id}")

        at = self._timestamp(at)
        self._ensure_consistent([(EventKind.START, at, note)], task_id)
        seq = self._events.append(task_id, EventKind.START, at, note)
        self._recompute()
        log.info("task_started", task_id=task_id, sequence_no=seq)
        return self._events.get(seq)

    def stop_task(
        self,
        task_id: str,
        at: datetime | None = None,
        note: str | None = None,
    ) -> TimeEvent:
        """停止计时

        Raises:
            MutationRejected: 任务不存在、未在运行，或停止时间早于会话开始
        """
        if not self._known(task_id):
            self._reject(f"task not found: {task_id}")
        session = self._snapshot.active_sessions.get(task_id)
        if session is None:
            self._reject(f"task is not running: {task_id}")

        at = self._timestamp(at)
        if at < session.started_at:
            self._reject(f"stop time precedes session start: {task_id}")
        self._ensure_consistent([(EventKind.STOP, at, note)], task_id)
        seq = self._events.append(task_id, EventKind.STOP, at, note)
        self._recompute()
        log.info("task_stopped", task_id=task_id, sequence_no=seq)
        return self._events.get(seq)

    def preview_manual_entry(
        self,
        task_id: str,
        start: datetime,
        stop: datetime,
        note: str | None = None,
    ) -> list[ValidationIssue]:
        """补录会引入的新诊断；空列表表示可以无冲突合并"""
        self._check_manual_entry(task_id, start, stop)
        return self._new_issues(
            [(EventKind.START, start, note), (EventKind.STOP, stop, None)], task_id
        )

    def manual_entry(
        self,
        task_id: str,
        start: datetime,
        stop: datetime,
        note: str | None = None,
        strict: bool = False,
    ) -> tuple[int, int]:
        """补录一段会话，时间可以早于已有事件

        默认直接合并，冲突作为诊断呈现；strict=True 时有新诊断则拒绝。

        Returns:
            (start_sequence_no, stop_sequence_no)
        """
        self._check_manual_entry(task_id, start, stop)
        if strict:
            self._ensure_consistent(
                [(EventKind.START, start, note), (EventKind.STOP, stop, None)], task_id
            )
        seqs = self._events.manual_entry(task_id, start, stop, note)
        self._recompute()
        log.info(
            "manual_entry_recorded",
            task_id=task_id,
            start_sequence_no=seqs[0],
            stop_sequence_no=seqs[1],
            issue_count=len(self._snapshot.diagnostics),
        )
        return seqs

    def remove_event(self, sequence_no: int) -> TimeEvent:
        """删除单个事件（撤销操作）"""
        event = self._mutate(lambda: self._events.remove(sequence_no))
        log.info("event_removed", sequence_no=sequence_no, task_id=event.task_id)
        return event

    def cancel_task(self, task_id: str) -> TimeEvent:
        """取消运行中的计时：删除开启会话的 start 事件"""
        session = self._snapshot.active_sessions.get(task_id)
        if session is None:
            self._reject(f"task is not running: {task_id}")
        return self.remove_event(session.sequence_no)

    def delete_session(self, start_sequence_no: int) -> tuple[TimeEvent, TimeEvent]:
        """删除一段已闭合会话的 start 与 stop"""
        interval = next(
            (i for i in self._snapshot.intervals if i.start_sequence_no == start_sequence_no),
            None,
        )
        if interval is None:
            self._reject(f"no closed session starts at event {start_sequence_no}")

        start = self._events.remove(interval.start_sequence_no)
        stop = self._events.remove(interval.stop_sequence_no)
        self._recompute()
        log.info(
            "session_deleted",
            task_id=interval.task_id,
            start_sequence_no=start.sequence_no,
            stop_sequence_no=stop.sequence_no,
        )
        return start, stop

    # ------------------------------------------------------------------
    # 内部
    # ------------------------------------------------------------------

    def _recompute(self) -> None:
        self._snapshot = replay(self._entities, self._events)

    def _mutate(self, action: Callable[[], T]) -> T:
        """执行变更并重算；被拒绝时记录日志后原样抛出"""
        try:
            result = action()
        except MutationRejected as e:
            log.warning("mutation_rejected", reason=e.reason)
            raise
        self._recompute()
        return result

    def _reject(self, reason: str) -> NoReturn:
        log.warning("mutation_rejected", reason=reason)
        raise MutationRejected(reason)

    def _known(self, task_id: str) -> bool:
        return self._entities.has_task(task_id)

    def _timestamp(self, at: datetime | None) -> datetime:
        at = at or self._clock()
        if at.tzinfo is None:
            self._reject("timestamp must carry a UTC offset")
        return at

    def _check_manual_entry(self, task_id: str, start: datetime, stop: datetime) -> None:
        if not self._known(task_id):
            self._reject(f"task not found: {task_id}")
        if start.tzinfo is None or stop.tzinfo is None:
            self._reject("timestamp must carry a UTC offset")
        if stop <= start:
            self._reject("stop must be after start")

    def _new_issues(
        self,
        candidates: list[tuple[EventKind, datetime, str | None]],
        task_id: str,
    ) -> list[ValidationIssue]:
        """在日志副本上试运行，返回候选事件新引入的诊断"""
        trial = self._events.copy()
        for kind, at, note in candidates:
            trial.append(task_id, kind, at, note)
        before = set(self._snapshot.diagnostics)
        return [
            issue
            for issue in replay(self._entities, trial).diagnostics
            if issue not in before
        ]

    def _ensure_consistent(
        self,
        candidates: list[tuple[EventKind, datetime, str | None]],
        task_id: str,
    ) -> None:
        issues = self._new_issues(candidates, task_id)
        if issues:
            kinds = ", ".join(sorted({issue.kind.value for issue in issues}))
            self._reject(f"event would introduce validation issues ({kinds}) for {task_id}")
