"""Derived Snapshot 数据模型

快照是 (EntityStore, EventLog) 的纯函数结果，从不持久化，
每次变更后整体重算。
"""

from datetime import datetime, timedelta

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from .enums import IssueKind


class ValidationIssue(BaseModel):
    """诊断记录：可恢复，不中断重放"""

    model_config = ConfigDict(frozen=True)

    kind: IssueKind
    task_id: str | None = Field(default=None, description="相关 Task ID")
    sequence_no: int | None = Field(default=None, description="出错事件序号")
    timestamp: AwareDatetime | None = Field(default=None, description="出错事件时间")
    line_no: int | None = Field(default=None, description="加载时的文件行号")
    message: str = Field(default="")


class ActiveSession(BaseModel):
    """正在运行的会话"""

    model_config = ConfigDict(frozen=True)

    started_at: AwareDatetime
    sequence_no: int = Field(description="开启会话的 start 事件序号")
    note: str | None = None


class Interval(BaseModel):
    """一段已闭合的 (start, stop) 区间"""

    model_config = ConfigDict(frozen=True)

    task_id: str
    start: AwareDatetime
    stop: AwareDatetime
    start_sequence_no: int
    stop_sequence_no: int
    note: str | None = None

    @property
    def duration(self) -> timedelta:
        return self.stop - self.start


class DerivedSnapshot(BaseModel):
    """当前状态快照：运行中的任务、各任务累计时长、诊断"""

    model_config = ConfigDict(frozen=True)

    active_sessions: dict[str, ActiveSession] = Field(default_factory=dict)
    accumulated_duration: dict[str, timedelta] = Field(default_factory=dict)
    intervals: list[Interval] = Field(default_factory=list)
    diagnostics: list[ValidationIssue] = Field(default_factory=list)

    def is_running(self, task_id: str) -> bool:
        return task_id in self.active_sessions

    def duration_for(self, task_id: str) -> timedelta:
        """已闭合区间的累计时长"""
        return self.accumulated_duration.get(task_id, timedelta(0))

    def running_duration(self, task_id: str, now: datetime) -> timedelta:
        """累计时长加上截至 now 的运行中会话"""
        total = self.duration_for(task_id)
        session = self.active_sessions.get(task_id)
        if session is not None and now > session.started_at:
            total += now - session.started_at
        return total

    def total_tracked(self) -> timedelta:
        return sum(self.accumulated_duration.values(), timedelta(0))

    def issues_for(self, sequence_no: int) -> list[ValidationIssue]:
        return [issue for issue in self.diagnostics if issue.sequence_no == sequence_no]

    @property
    def flagged_sequence_numbers(self) -> set[int]:
        """被诊断标记的事件序号"""
        return {
            issue.sequence_no for issue in self.diagnostics if issue.sequence_no is not None
        }
