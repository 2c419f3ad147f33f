"""枚举定义

包含事件类型 EventKind、会话状态机 SessionState、实体类型 EntityKind、
诊断类型 IssueKind，以及 SESSION_TRANSITIONS 合法流转映射。
"""

from enum import StrEnum


class EventKind(StrEnum):
    """时间事件类型"""

    START = "start"
    STOP = "stop"


class SessionState(StrEnum):
    """单个任务的会话状态机

    暂停/恢复即 stop + start，没有独立的 PAUSED 状态。
    """

    IDLE = "IDLE"
    RUNNING = "RUNNING"


# 合法流转：只允许 start/stop 严格交替
SESSION_TRANSITIONS: dict[SessionState, dict[EventKind, SessionState]] = {
    SessionState.IDLE: {EventKind.START: SessionState.RUNNING},
    SessionState.RUNNING: {EventKind.STOP: SessionState.IDLE},
}


class EntityKind(StrEnum):
    """ID 分配的实体类型"""

    PROJECT = "project"
    CATEGORY = "category"
    TASK = "task"


class IssueKind(StrEnum):
    """诊断类型"""

    # 重放期间按事件检测
    DOUBLE_START = "DOUBLE_START"
    UNMATCHED_STOP = "UNMATCHED_STOP"
    DANGLING_TASK_REFERENCE = "DANGLING_TASK_REFERENCE"

    # 实体引用检查
    MISSING_PROJECT_REFERENCE = "MISSING_PROJECT_REFERENCE"
    MISSING_CATEGORY_REFERENCE = "MISSING_CATEGORY_REFERENCE"

    # 加载时跳过的坏行
    MALFORMED_EVENT_LINE = "MALFORMED_EVENT_LINE"


# 事件违反状态机时对应的诊断
TRANSITION_ISSUES: dict[SessionState, IssueKind] = {
    SessionState.IDLE: IssueKind.UNMATCHED_STOP,
    SessionState.RUNNING: IssueKind.DOUBLE_START,
}


def validate_transition(state: SessionState, kind: EventKind) -> bool:
    """验证事件在当前状态下是否合法

    Args:
        state: 当前会话状态
        kind: 事件类型

    Returns:
        True 如果流转合法，否则 False
    """
    return kind in SESSION_TRANSITIONS.get(state, {})


def next_state(state: SessionState, kind: EventKind) -> SessionState:
    """返回合法事件之后的状态；非法事件保持原状态"""
    return SESSION_TRANSITIONS.get(state, {}).get(kind, state)
