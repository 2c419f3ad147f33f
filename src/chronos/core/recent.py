"""最近使用的 Ledger 列表

<state_dir>/recent_ledgers.txt，每行一个绝对路径，最新的在最前。
"""

from pathlib import Path

from .config import absolutize

RECENT_LEDGERS_FILE = "recent_ledgers.txt"
MAX_RECENT_LEDGERS = 50


def recent_ledgers(state_dir: Path, limit: int = MAX_RECENT_LEDGERS) -> list[Path]:
    """读取最近使用的 Ledger，文件不存在时返回空列表"""
    try:
        raw = (state_dir / RECENT_LEDGERS_FILE).read_text(encoding="utf-8")
    except FileNotFoundError:
        return []

    rows: list[Path] = []
    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        rows.append(Path(line))
        if len(rows) >= limit:
            break
    return rows


def remember_ledger(state_dir: Path, path: Path) -> None:
    """把 Ledger 移到列表最前，并截断到上限"""
    path = absolutize(path)
    entries = [entry for entry in recent_ledgers(state_dir) if entry != path]
    entries.insert(0, path)
    del entries[MAX_RECENT_LEDGERS:]

    state_dir.mkdir(parents=True, exist_ok=True)
    (state_dir / RECENT_LEDGERS_FILE).write_text(
        "".join(f"{entry}\n" for entry in entries),
        encoding="utf-8",
    )
