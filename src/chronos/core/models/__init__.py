"""Chronos Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .entities import NO_DESCRIPTION, SCHEMA_VERSION, Category, LedgerHeader, Project, Task
from .enums import (
    SESSION_TRANSITIONS,
    TRANSITION_ISSUES,
    EntityKind,
    EventKind,
    IssueKind,
    SessionState,
    next_state,
    validate_transition,
)
from .event import TimeEvent
from .snapshot import ActiveSession, DerivedSnapshot, Interval, ValidationIssue
from .summary import UNCATEGORIZED, DaySession, Summary, WeekStats

__all__ = [
    # 枚举
    "EventKind",
    "SessionState",
    "EntityKind",
    "IssueKind",
    # 状态机
    "SESSION_TRANSITIONS",
    "TRANSITION_ISSUES",
    "validate_transition",
    "next_state",
    # 实体
    "Project",
    "Category",
    "Task",
    "LedgerHeader",
    "NO_DESCRIPTION",
    "SCHEMA_VERSION",
    # Event
    "TimeEvent",
    # Snapshot
    "ActiveSession",
    "Interval",
    "ValidationIssue",
    "DerivedSnapshot",
    # 汇总
    "Summary",
    "WeekStats",
    "DaySession",
    "UNCATEGORIZED",
]
