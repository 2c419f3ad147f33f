"""EventLog 内存实现

追加时分配 sequence_no，不在追加时校验 start/stop 交替：
补录事件可以落在历史任意位置，校验统一在重放时对全量历史进行。
"""

from collections import defaultdict
from collections.abc import Iterator
from datetime import datetime

from ..exceptions import MutationRejected
from ..models.enums import EventKind
from ..models.event import TimeEvent
from ..models.snapshot import ValidationIssue


class EventLog:
    """时间事件日志，按 sequence_no 保存"""

    def __init__(
        self,
        events: list[TimeEvent] | None = None,
        load_issues: list[ValidationIssue] | None = None,
    ) -> None:
        """
        Args:
            events: 已有事件（例如从文件加载），sequence_no 必须唯一
            load_issues: 加载时跳过坏行产生的诊断
        """
        self._events: dict[int, TimeEvent] = {}
        self._next_seq = 1
        self.load_issues: list[ValidationIssue] = list(load_issues or [])
        for event in events or []:
            self.insert(event)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[TimeEvent]:
        """按 sequence_no 顺序遍历"""
        return iter(sorted(self._events.values(), key=lambda e: e.sequence_no))

    def __contains__(self, sequence_no: object) -> bool:
        return sequence_no in self._events

    @property
    def next_sequence_no(self) -> int:
        return self._next_seq

    def get(self, sequence_no: int) -> TimeEvent | None:
        return self._events.get(sequence_no)

    def insert(self, event: TimeEvent) -> None:
        """按原序号插入已存在的事件

        Raises:
            ValueError: sequence_no 已被占用
        """
        if event.sequence_no in self._events:
            raise ValueError(f"duplicate sequence_no: {event.sequence_no}")
        self._events[event.sequence_no] = event
        self._next_seq = max(self._next_seq, event.sequence_no + 1)

    def append(
        self,
        task_id: str,
        kind: EventKind,
        timestamp: datetime,
        note: str | None = None,
    ) -> int:
        """追加事件，返回分配的 sequence_no"""
        event = TimeEvent(
            sequence_no=self._next_seq,
            task_id=task_id,
            kind=kind,
            timestamp=timestamp,
            note=note,
        )
        self.insert(event)
        return event.sequence_no

    def manual_entry(
        self,
        task_id: str,
        start: datetime,
        stop: datetime,
        note: str | None = None,
    ) -> tuple[int, int]:
        """补录一段完整会话：连续序号的 start + stop"""
        start_seq = self.append(task_id, EventKind.START, start, note)
        stop_seq = self.append(task_id, EventKind.STOP, stop)
        return start_seq, stop_seq

    def remove(self, sequence_no: int) -> TimeEvent:
        """删除单个事件；序号不回收

        Raises:
            MutationRejected: 事件不存在
        """
        event = self._events.pop(sequence_no, None)
        if event is None:
            raise MutationRejected(f"event not found: {sequence_no}")
        return event

    def ordered(self) -> list[TimeEvent]:
        """规范顺序：(timestamp, sequence_no) 升序"""
        return sorted(self._events.values(), key=lambda e: e.sort_key)

    def by_task(self) -> dict[str, list[TimeEvent]]:
        """按 task_id 分区，每个分区内按规范顺序排序"""
        groups: dict[str, list[TimeEvent]] = defaultdict(list)
        for event in self._events.values():
            groups[event.task_id].append(event)
        for events in groups.values():
            events.sort(key=lambda e: e.sort_key)
        return dict(groups)

    def events_for_task(self, task_id: str) -> list[TimeEvent]:
        events = [e for e in self._events.values() if e.task_id == task_id]
        events.sort(key=lambda e: e.sort_key)
        return events

    def copy(self) -> "EventLog":
        """浅拷贝（事件本身不可变），保留序号高水位"""
        clone = EventLog(list(self._events.values()), self.load_issues)
        clone._next_seq = self._next_seq
        return clone
