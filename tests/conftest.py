"""chronos core 测试配置 -- 共享 fixture"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from chronos.core.ledger import Ledger

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    """从 2026-03-02 09:00 UTC（周一）开始的假时钟"""
    return FakeClock()


@pytest.fixture
def ledger_path(tmp_path: Path) -> Path:
    """临时 Ledger 文件路径（尚未创建）"""
    return tmp_path / "work.ledger"


@pytest.fixture
def ledger(clock: FakeClock) -> Ledger:
    """纯内存空 Ledger"""
    return Ledger.new(clock=clock)


@pytest.fixture
def make_task(ledger: Ledger) -> Callable[..., str]:
    """在 ledger 中创建项目 + 任务，返回 task_id"""

    def _make(description: str = "Write report", category: bool = False) -> str:
        project = ledger.create_project("Acme")
        category_id = ledger.create_category("Deep work").id if category else None
        return ledger.create_task(project.id, description, category_id).id

    return _make


def at(hours: float, day: int = 0) -> datetime:
    """T0 之后若干天若干小时的时间点"""
    return T0 + timedelta(days=day, hours=hours)
