"""汇总统计数据模型"""

from datetime import date, timedelta

from pydantic import AwareDatetime, BaseModel, Field

# 无分类任务的汇总桶
UNCATEGORIZED = "uncategorized"


class Summary(BaseModel):
    """按天/任务/项目/分类汇总的时长"""

    by_day: dict[date, dict[str, timedelta]] = Field(
        default_factory=dict,
        description="本地日期 -> task_id -> 时长",
    )
    by_task: dict[str, timedelta] = Field(default_factory=dict)
    by_project: dict[str, timedelta] = Field(default_factory=dict)
    by_category: dict[str, timedelta] = Field(default_factory=dict)
    total: timedelta = Field(default=timedelta(0))

    def totals_for_day(self, day: date) -> list[tuple[str, timedelta]]:
        """某天各任务时长，按时长倒序、ID 正序"""
        rows = list(self.by_day.get(day, {}).items())
        rows.sort(key=lambda row: (-row[1], row[0]))
        return rows

    def day_total(self, day: date) -> timedelta:
        return sum(self.by_day.get(day, {}).values(), timedelta(0))


class WeekStats(BaseModel):
    """一周（周一开始）的统计"""

    week_start: date
    daily: list[tuple[date, timedelta]] = Field(default_factory=list)
    total: timedelta = Field(default=timedelta(0))
    avg_per_day: timedelta = Field(default=timedelta(0))
    max_day: timedelta = Field(default=timedelta(0))
    active_days: int = 0
    project_totals: dict[str, timedelta] = Field(default_factory=dict)


class DaySession(BaseModel):
    """裁剪到某一本地日期的会话行"""

    task_id: str
    project_id: str | None = None
    title: str
    note: str | None = None
    start: AwareDatetime
    stop: AwareDatetime
    display_start: AwareDatetime
    display_stop: AwareDatetime
    start_sequence_no: int
    stop_sequence_no: int | None = Field(default=None, description="运行中会话为 None")
