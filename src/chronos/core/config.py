"""配置加载 -- 可通过环境变量覆盖

包含 Ledger 路径、状态目录、本地时区与日志配置。
非法取值记录 warning 后回退默认值，不阻塞启动。
"""

import os
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from pydantic import BaseModel, Field

from .exceptions import LedgerError

log = structlog.get_logger()

APP_DIR_NAME = "chronos_timeledger"


class ChronosConfig(BaseModel):
    """Chronos 配置 -- 从环境变量加载

    环境变量:
        CHRONOS_LEDGER: 默认 Ledger 文件路径
        CHRONOS_STATE_DIR: 状态目录（最近使用的 Ledger 列表）
        CHRONOS_TIMEZONE: IANA 时区名，用于按本地午夜切分
        CHRONOS_LOG_FORMAT: 日志渲染模式（dev/json）
        CHRONOS_LOG_LEVEL: 日志级别
    """

    ledger_path: Path | None = Field(default=None, description="默认 Ledger 文件路径")
    state_dir: Path = Field(
        default_factory=lambda: _default_state_dir(),
        description="状态目录",
    )
    timezone: str | None = Field(default=None, description="IANA 时区名，None 表示系统时区")
    log_format: Literal["dev", "json"] = Field(default="dev", description="日志渲染模式")
    log_level: str = Field(default="WARNING", description="日志级别")

    def tz(self) -> tzinfo:
        """本地时区；未配置时使用系统时区"""
        if self.timezone:
            return ZoneInfo(self.timezone)
        return _system_zone()


def _system_zone() -> tzinfo:
    """系统时区：TZ 环境变量 > /etc/localtime 指向的 IANA 名称 > 当前固定偏移"""
    candidates = []
    if val := os.environ.get("TZ"):
        candidates.append(val.removeprefix(":"))
    localtime = Path("/etc/localtime")
    if localtime.is_symlink():
        target = localtime.resolve().as_posix()
        if "/zoneinfo/" in target:
            candidates.append(target.split("/zoneinfo/", 1)[1])

    for name in candidates:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError, OSError):
            log.debug("system_timezone_unresolved", candidate=name)

    # 固定偏移不含夏令时规则
    log.warning("system_timezone_fixed_offset", hint="set CHRONOS_TIMEZONE")
    return datetime.now().astimezone().tzinfo or ZoneInfo("UTC")


def _default_state_dir() -> Path:
    if val := os.environ.get("XDG_STATE_HOME"):
        return Path(val) / APP_DIR_NAME
    if val := os.environ.get("HOME"):
        return Path(val) / ".local" / "state" / APP_DIR_NAME
    return Path("." + APP_DIR_NAME)


def load_config() -> ChronosConfig:
    """从环境变量加载配置

    Returns:
        ChronosConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("CHRONOS_LEDGER"):
        kwargs["ledger_path"] = Path(val)

    if val := os.environ.get("CHRONOS_STATE_DIR"):
        kwargs["state_dir"] = Path(val)

    if val := os.environ.get("CHRONOS_TIMEZONE"):
        try:
            ZoneInfo(val)
            kwargs["timezone"] = val
        except (ZoneInfoNotFoundError, ValueError):
            log.warning(
                "invalid_timezone_config",
                env_var="CHRONOS_TIMEZONE",
                value=val,
                fallback="system",
            )

    if val := os.environ.get("CHRONOS_LOG_FORMAT"):
        if val in ("dev", "json"):
            kwargs["log_format"] = val
        else:
            log.warning(
                "invalid_log_format_config",
                env_var="CHRONOS_LOG_FORMAT",
                value=val,
                fallback="dev",
            )

    if val := os.environ.get("CHRONOS_LOG_LEVEL"):
        kwargs["log_level"] = val.upper()

    return ChronosConfig(**kwargs)


def absolutize(path: Path) -> Path:
    """转为绝对路径；文件存在时解析符号链接"""
    path = path.expanduser()
    if not path.is_absolute():
        path = Path.cwd() / path
    if path.exists():
        return path.resolve()
    return path


def resolve_ledger_path(cli_path: Path | None, config: ChronosConfig) -> Path:
    """确定要使用的 Ledger 文件

    优先级：命令行参数 > CHRONOS_LEDGER > 最近使用的 Ledger

    Raises:
        LedgerError: 无法确定 Ledger
    """
    if cli_path is not None:
        return absolutize(cli_path)

    if config.ledger_path is not None:
        return absolutize(config.ledger_path)

    from .recent import recent_ledgers

    recent = recent_ledgers(config.state_dir, limit=1)
    if recent:
        return recent[0]

    raise LedgerError(
        "no ledger selected: pass --ledger <path>, set CHRONOS_LEDGER, "
        "or pick one from `ledgers`"
    )
