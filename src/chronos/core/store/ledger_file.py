"""Ledger 文件编解码

一个文件包含两段：
1. 头部：JSON 文档（项目、分类、任务表）；旧版工具写出的 TOML 头部也可读取
2. `=== EVENTS ===` 分隔行之后，每行一个 JSON 事件（JSON Lines）

头部损坏时整个加载失败；单条事件行损坏时跳过并记录诊断。
"""

import json
import os
import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import structlog
from pydantic import ValidationError

from ..exceptions import PersistenceError
from ..models.entities import LedgerHeader
from ..models.enums import IssueKind
from ..models.event import TimeEvent
from ..models.snapshot import ValidationIssue
from .event_log import EventLog

log = structlog.get_logger()

EVENTS_MARKER = "=== EVENTS ==="


@dataclass
class LedgerDocument:
    """解码后的 Ledger 文件内容"""

    header: LedgerHeader = field(default_factory=LedgerHeader)
    events: EventLog = field(default_factory=EventLog)


def parse_ledger(text: str, path: Path | None = None) -> LedgerDocument:
    """解码 Ledger 文本

    Args:
        text: 文件全文
        path: 文件路径，仅用于错误信息

    Returns:
        LedgerDocument 实例；空文本返回空 Ledger

    Raises:
        PersistenceError: 头部不是合法的 JSON 或 TOML 文档
    """
    if not text.strip():
        return LedgerDocument()

    lines = text.splitlines()
    try:
        marker_index = next(i for i, line in enumerate(lines) if line.strip() == EVENTS_MARKER)
    except StopIteration:
        marker_index = len(lines)

    header = _parse_header("\n".join(lines[:marker_index]), path)
    # 事件行号从 1 开始，对应文件中的实际行
    event_lines = [(i + 1, line) for i, line in enumerate(lines) if i > marker_index]
    return LedgerDocument(header=header, events=_parse_events(event_lines, path))


def _parse_header(blob: str, path: Path | None) -> LedgerHeader:
    if not blob.strip():
        return LedgerHeader()
    if blob.lstrip().startswith("{"):
        try:
            data = json.loads(blob)
        except json.JSONDecodeError as e:
            raise _header_error(f"invalid JSON: {e.msg}", blob, e.lineno, path) from e
    else:
        # 旧版工具把头部写成 TOML
        try:
            data = tomllib.loads(blob)
        except tomllib.TOMLDecodeError as e:
            raise _header_error(f"invalid TOML: {e}", blob, _toml_error_line(e), path) from e
    try:
        return LedgerHeader.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "<root>"
        raise PersistenceError(
            f"failed to parse ledger header at {location}: {first['msg']}",
            path=path,
            record=json.dumps(first["input"], ensure_ascii=False, default=str)[:200],
        ) from e


def _header_error(
    reason: str, blob: str, line_no: int | None, path: Path | None
) -> PersistenceError:
    lines = blob.splitlines()
    record = None
    if line_no is not None and 1 <= line_no <= len(lines):
        record = lines[line_no - 1]
    return PersistenceError(
        f"failed to parse ledger header: {reason}",
        path=path,
        line_no=line_no,
        record=record,
    )


def _toml_error_line(error: tomllib.TOMLDecodeError) -> int | None:
    # tomllib 的错误信息以 "(at line N, column M)" 结尾
    message = str(error)
    marker = "at line "
    if marker in message:
        digits = message.split(marker, 1)[1].split(",")[0].rstrip(")")
        if digits.isdigit():
            return int(digits)
    return None


def _parse_events(event_lines: list[tuple[int, str]], path: Path | None) -> EventLog:
    """解码事件行；坏行跳过并记为 MALFORMED_EVENT_LINE 诊断

    缺少 sequence_no 的旧事件行在最大显式序号之后按行序补号。
    """
    raws: list[tuple[int, str, dict]] = []
    issues: list[ValidationIssue] = []

    for line_no, line in event_lines:
        if not line.strip():
            continue
        try:
            raw = json.loads(line)
        except json.JSONDecodeError as e:
            issues.append(_malformed(line_no, line, f"invalid JSON: {e.msg}", path))
            continue
        if not isinstance(raw, dict):
            issues.append(_malformed(line_no, line, "event line is not an object", path))
            continue
        raws.append((line_no, line, raw))

    explicit = [
        _explicit_sequence(raw["sequence_no"]) for _, _, raw in raws if "sequence_no" in raw
    ]
    next_seq = max((seq for seq in explicit if seq is not None), default=0) + 1

    events = EventLog()
    for line_no, line, raw in raws:
        if "sequence_no" not in raw:
            raw = {**raw, "sequence_no": next_seq}
            next_seq += 1
        try:
            event = TimeEvent.model_validate(raw)
        except ValidationError as e:
            first = e.errors()[0]
            field_name = ".".join(str(part) for part in first["loc"]) or "<event>"
            issues.append(_malformed(line_no, line, f"{field_name}: {first['msg']}", path))
            continue
        if event.sequence_no in events:
            issues.append(
                _malformed(line_no, line, f"duplicate sequence_no {event.sequence_no}", path)
            )
            continue
        events.insert(event)

    events.load_issues = issues
    return events


def _explicit_sequence(value: object) -> int | None:
    """按 TimeEvent 的宽松转换规则读出显式序号，无法转换时返回 None"""
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _malformed(line_no: int, line: str, reason: str, path: Path | None) -> ValidationIssue:
    log.warning(
        "malformed_event_line_skipped",
        path=str(path) if path else None,
        line_no=line_no,
        reason=reason,
    )
    return ValidationIssue(
        kind=IssueKind.MALFORMED_EVENT_LINE,
        line_no=line_no,
        message=f"{reason}: {line.strip()[:200]}",
    )


def dump_ledger(header: LedgerHeader, events: EventLog) -> str:
    """编码 Ledger 文本，事件按 sequence_no 顺序逐行写出"""
    parts = [header.model_dump_json(indent=2), EVENTS_MARKER]
    parts.extend(event.model_dump_json(exclude_none=True) for event in events)
    return "\n".join(parts) + "\n"


def load_ledger_file(path: Path) -> LedgerDocument:
    """读取 Ledger 文件；文件不存在时返回空 Ledger

    Raises:
        PersistenceError: 读取失败或头部损坏
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return LedgerDocument()
    except (OSError, UnicodeDecodeError) as e:
        raise PersistenceError(f"failed to read ledger: {e}", path=path) from e
    return parse_ledger(text, path)


def save_ledger_file(path: Path, header: LedgerHeader, events: EventLog) -> None:
    """原子写入 Ledger 文件（临时文件 + os.replace）

    Raises:
        PersistenceError: 写入失败
    """
    payload = dump_ledger(header, events)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise PersistenceError(f"failed to write ledger: {e}", path=path) from e


def file_fingerprint(path: Path) -> tuple[int, int] | None:
    """文件指纹 (mtime_ns, size)，用于检测外部修改；文件不存在返回 None"""
    try:
        stat = path.stat()
    except FileNotFoundError:
        return None
    return (stat.st_mtime_ns, stat.st_size)
