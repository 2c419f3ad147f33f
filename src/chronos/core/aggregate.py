"""汇总统计 -- 按天/任务/项目/分类聚合区间时长

只消费快照中已闭合的区间，不重复做状态机校验；
跨本地午夜的区间按各天实际覆盖的部分拆分。
"""

from collections import defaultdict
from collections.abc import Iterator
from datetime import UTC, date, datetime, time, timedelta, tzinfo

from .models.entities import NO_DESCRIPTION
from .models.snapshot import DerivedSnapshot, Interval
from .models.summary import UNCATEGORIZED, DaySession, Summary, WeekStats
from .store.entity_store import EntityStore


def _utc(value: datetime) -> datetime:
    # 同一 tzinfo 的 aware datetime 相减会忽略 DST 偏移变化，统一转到 UTC 计算
    return value.astimezone(UTC)


def local_day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """本地日期的 [当天零点, 次日零点)，以 UTC 表示"""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return _utc(start), _utc(end)


def split_by_day(
    start: datetime,
    stop: datetime,
    tz: tzinfo,
) -> Iterator[tuple[date, timedelta]]:
    """把 [start, stop) 在本地午夜处切分，逐天产出 (日期, 时长)"""
    cursor = _utc(start)
    stop = _utc(stop)
    while cursor < stop:
        day = cursor.astimezone(tz).date()
        _, day_end = local_day_bounds(day, tz)
        slice_end = min(day_end, stop)
        yield day, slice_end - cursor
        cursor = slice_end


def _committed_intervals(
    snapshot: DerivedSnapshot,
    now: datetime | None,
) -> list[Interval]:
    flagged = snapshot.flagged_sequence_numbers
    intervals = [
        interval
        for interval in snapshot.intervals
        if interval.start_sequence_no not in flagged
        and interval.stop_sequence_no not in flagged
    ]
    if now is not None:
        for task_id, session in snapshot.active_sessions.items():
            if now > session.started_at:
                intervals.append(
                    Interval(
                        task_id=task_id,
                        start=session.started_at,
                        stop=now,
                        start_sequence_no=session.sequence_no,
                        # 运行中会话没有 stop 事件
                        stop_sequence_no=0,
                        note=session.note,
                    )
                )
    return intervals


def aggregate(
    snapshot: DerivedSnapshot,
    entities: EntityStore,
    tz: tzinfo,
    now: datetime | None = None,
    since: date | None = None,
    until: date | None = None,
) -> Summary:
    """聚合区间时长

    Args:
        snapshot: 重放得到的快照
        entities: 实体存储（task -> project/category 映射）
        tz: 切分午夜所用的本地时区
        now: 若提供，运行中的会话按截至 now 计入
        since: 起始本地日期（含）
        until: 结束本地日期（含）

    Returns:
        Summary 实例
    """
    by_day: dict[date, dict[str, timedelta]] = defaultdict(lambda: defaultdict(timedelta))
    by_task: dict[str, timedelta] = defaultdict(timedelta)
    by_project: dict[str, timedelta] = defaultdict(timedelta)
    by_category: dict[str, timedelta] = defaultdict(timedelta)

    for interval in _committed_intervals(snapshot, now):
        task = entities.task(interval.task_id)
        for day, duration in split_by_day(interval.start, interval.stop, tz):
            if since is not None and day < since:
                continue
            if until is not None and day > until:
                continue
            by_day[day][interval.task_id] += duration
            by_task[interval.task_id] += duration
            if task is not None:
                by_project[task.project_id] += duration
                by_category[task.category_id or UNCATEGORIZED] += duration

    return Summary(
        by_day={day: dict(sorted(tasks.items())) for day, tasks in sorted(by_day.items())},
        by_task=dict(sorted(by_task.items())),
        by_project=dict(sorted(by_project.items())),
        by_category=dict(sorted(by_category.items())),
        total=sum(by_task.values(), timedelta(0)),
    )


def start_of_week(day: date) -> date:
    """所在周的周一"""
    return day - timedelta(days=day.weekday())


def week_stats(summary: Summary, entities: EntityStore, day: date) -> WeekStats:
    """day 所在周（周一至周日）的统计"""
    week_start = start_of_week(day)
    daily: list[tuple[date, timedelta]] = []
    project_totals: dict[str, timedelta] = defaultdict(timedelta)
    total = timedelta(0)
    max_day = timedelta(0)
    active_days = 0

    for offset in range(7):
        current = week_start + timedelta(days=offset)
        durations = summary.by_day.get(current, {})
        day_total = sum(durations.values(), timedelta(0))
        if day_total > timedelta(0):
            active_days += 1
        max_day = max(max_day, day_total)
        total += day_total
        daily.append((current, day_total))

        for task_id, duration in durations.items():
            task = entities.task(task_id)
            if task is not None:
                project_totals[task.project_id] += duration

    return WeekStats(
        week_start=week_start,
        daily=daily,
        total=total,
        avg_per_day=timedelta(seconds=int(total.total_seconds()) // 7),
        max_day=max_day,
        active_days=active_days,
        project_totals=dict(sorted(project_totals.items(), key=lambda row: (-row[1], row[0]))),
    )


def sessions_for_day(
    snapshot: DerivedSnapshot,
    entities: EntityStore,
    day: date,
    tz: tzinfo,
    now: datetime | None = None,
) -> list[DaySession]:
    """某一本地日期内的会话，按当天可见部分裁剪"""
    day_start, day_end = local_day_bounds(day, tz)
    rows: list[DaySession] = []

    for interval in _committed_intervals(snapshot, now):
        start, stop = _utc(interval.start), _utc(interval.stop)
        if stop <= day_start or start >= day_end:
            continue
        task = entities.task(interval.task_id)
        rows.append(
            DaySession(
                task_id=interval.task_id,
                project_id=task.project_id if task else None,
                title=task.title if task else NO_DESCRIPTION,
                note=interval.note,
                start=interval.start,
                stop=interval.stop,
                display_start=max(start, day_start),
                display_stop=min(stop, day_end),
                start_sequence_no=interval.start_sequence_no,
                stop_sequence_no=interval.stop_sequence_no or None,
            )
        )

    rows.sort(key=lambda row: (row.display_start, row.display_stop, row.title))
    return rows


def format_duration(duration: timedelta) -> str:
    """HH:MM:SS，负数按 0 处理"""
    total_seconds = max(int(duration.total_seconds()), 0)
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
