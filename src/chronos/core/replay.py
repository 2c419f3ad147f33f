"""重放引擎 -- 从事件日志推导 Derived Snapshot

纯函数：相同的 (EntityStore, EventLog) 总是得到相同的快照。
流程：
1. 按 task_id 哈希分区
2. 分区内按 (timestamp, sequence_no) 排序
3. 逐个事件驱动 IDLE/RUNNING 状态机，非法事件记诊断后忽略
"""

import time
from datetime import timedelta

import structlog

from .models.enums import (
    TRANSITION_ISSUES,
    EventKind,
    IssueKind,
    SessionState,
    next_state,
    validate_transition,
)
from .models.event import TimeEvent
from .models.snapshot import ActiveSession, DerivedSnapshot, Interval, ValidationIssue
from .store.entity_store import EntityStore
from .store.event_log import EventLog

log = structlog.get_logger()

_ISSUE_MESSAGES: dict[IssueKind, str] = {
    IssueKind.DOUBLE_START: "start while task already has an open session",
    IssueKind.UNMATCHED_STOP: "stop without an open session",
    IssueKind.DANGLING_TASK_REFERENCE: "event references a nonexistent task",
}


def _issue(kind: IssueKind, event: TimeEvent) -> ValidationIssue:
    return ValidationIssue(
        kind=kind,
        task_id=event.task_id,
        sequence_no=event.sequence_no,
        timestamp=event.timestamp,
        message=_ISSUE_MESSAGES[kind],
    )


def replay_task(
    task_id: str,
    events: list[TimeEvent],
) -> tuple[list[Interval], ActiveSession | None, list[ValidationIssue]]:
    """重放单个任务的事件（已按规范顺序排序）

    Returns:
        (闭合区间, 运行中会话或 None, 诊断)
    """
    intervals: list[Interval] = []
    issues: list[ValidationIssue] = []
    state = SessionState.IDLE
    opened: TimeEvent | None = None

    for event in events:
        if not validate_transition(state, event.kind):
            # DOUBLE_START 不视为隐式 stop，原会话继续运行
            issues.append(_issue(TRANSITION_ISSUES[state], event))
            continue

        if event.kind == EventKind.START:
            opened = event
        elif opened is not None:
            intervals.append(
                Interval(
                    task_id=task_id,
                    start=opened.timestamp,
                    stop=event.timestamp,
                    start_sequence_no=opened.sequence_no,
                    stop_sequence_no=event.sequence_no,
                    note=opened.note,
                )
            )
            opened = None
        state = next_state(state, event.kind)

    active = None
    if state is SessionState.RUNNING and opened is not None:
        active = ActiveSession(
            started_at=opened.timestamp,
            sequence_no=opened.sequence_no,
            note=opened.note,
        )
    return intervals, active, issues


def replay(entities: EntityStore, events: EventLog) -> DerivedSnapshot:
    """全量重放，生成 Derived Snapshot

    任何诊断都不会中断重放；快照始终可用。

    Args:
        entities: 实体存储
        events: 事件日志

    Returns:
        DerivedSnapshot 实例
    """
    start_time = time.monotonic()

    active_sessions: dict[str, ActiveSession] = {}
    accumulated: dict[str, timedelta] = {task.id: timedelta(0) for task in entities.tasks}
    intervals: list[Interval] = []
    event_issues: list[ValidationIssue] = []

    for task_id, task_events in events.by_task().items():
        if not entities.has_task(task_id):
            event_issues.extend(
                _issue(IssueKind.DANGLING_TASK_REFERENCE, event) for event in task_events
            )
            continue

        task_intervals, active, issues = replay_task(task_id, task_events)
        intervals.extend(task_intervals)
        event_issues.extend(issues)
        accumulated[task_id] = sum(
            (interval.duration for interval in task_intervals), timedelta(0)
        )
        if active is not None:
            active_sessions[task_id] = active

    intervals.sort(key=lambda i: (i.start, i.start_sequence_no))
    event_issues.sort(key=lambda i: (i.timestamp, i.sequence_no))
    load_issues = sorted(events.load_issues, key=lambda i: i.line_no or 0)
    diagnostics = [*load_issues, *event_issues, *entities.reference_issues()]

    snapshot = DerivedSnapshot(
        active_sessions=dict(sorted(active_sessions.items())),
        accumulated_duration=dict(sorted(accumulated.items())),
        intervals=intervals,
        diagnostics=diagnostics,
    )

    log.debug(
        "replay_completed",
        event_count=len(events),
        issue_count=len(diagnostics),
        active_count=len(active_sessions),
        elapsed_ms=int((time.monotonic() - start_time) * 1000),
    )
    return snapshot
