"""TimeEvent 数据模型

事件日志 append-only：新事件总是拿到更大的 sequence_no，
但 timestamp 可以是任意时刻（补录），重放时按规范顺序排序。
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_validator, model_validator

from .enums import EventKind


class TimeEvent(BaseModel):
    """单条 start/stop 事件

    sequence_no 在追加时分配，与墙钟时间无关，
    是同一时刻多个事件的排序依据。
    """

    model_config = ConfigDict(frozen=True)

    sequence_no: int = Field(ge=1, description="追加序号，严格单调递增")
    task_id: str = Field(min_length=1, description="关联的 Task ID")
    kind: EventKind = Field(description="事件类型")
    timestamp: AwareDatetime = Field(description="事件时间，必须带时区偏移")
    note: str | None = Field(default=None, description="会话备注，与任务描述无关")

    @field_validator("timestamp")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        # 同一 zoneinfo 的时间直接比较/相减会忽略 DST，统一存为 UTC
        return value.astimezone(UTC)

    @model_validator(mode="before")
    @classmethod
    def _kind_from_type(cls, data: Any) -> Any:
        # 旧格式用 "type" 字段表示事件类型
        if isinstance(data, dict) and "kind" not in data and "type" in data:
            data = {k: v for k, v in data.items() if k != "type"} | {"kind": data["type"]}
        return data

    @property
    def sort_key(self) -> tuple[datetime, int]:
        """规范顺序：(timestamp, sequence_no) 升序"""
        return (self.timestamp, self.sequence_no)
