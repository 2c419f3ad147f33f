"""structlog 配置模块

日志一律写到 stderr，CLI 的正常输出留在 stdout。
dev 模式在终端上着色，json 模式每条日志一行 JSON（异常展开为结构化字段）。
"""

import logging
import sys

import structlog


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def setup_logging(log_format: str = "dev", log_level: str = "WARNING") -> None:
    """初始化 structlog 配置，可重复调用

    Args:
        log_format: "json" 为结构化 JSON 输出，其余为 pretty print
        log_level: 标准库日志级别名，无法识别时按 WARNING
    """
    shared = _shared_processors()

    structlog.configure(
        processors=[
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    final: list[structlog.types.Processor] = [
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
    ]
    if log_format == "json":
        final.append(structlog.processors.dict_tracebacks)
    final.append(_renderer(log_format))

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processors=final, foreign_pre_chain=shared)
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.getLevelNamesMapping().get(log_level.upper(), logging.WARNING))
