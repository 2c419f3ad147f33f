"""Ledger 异常体系

ValidationIssue 是数据记录（见 models.snapshot），从不抛出；
此处只定义会中断调用的两类错误。
"""

from pathlib import Path


class LedgerError(Exception):
    """Ledger 基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 调用方修正输入后是否可重试
        """
        super().__init__(message)
        self.recoverable = recoverable


class MutationRejected(LedgerError):
    """引擎拒绝执行变更（任务已在运行、引用不存在的实体等）

    拒绝时 Ledger 状态保持不变。
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason, recoverable=True)
        self.reason = reason


class PersistenceError(LedgerError):
    """Ledger 文件读写失败

    头部损坏时整个加载失败；line_no/record 指出出错位置。
    """

    def __init__(
        self,
        message: str,
        path: Path | None = None,
        line_no: int | None = None,
        record: str | None = None,
    ) -> None:
        """
        Args:
            message: 错误描述
            path: Ledger 文件路径
            line_no: 出错行号（从 1 开始）
            record: 出错的原始文本（头部出错行；行号未知时为校验失败的取值）
        """
        location = ""
        if path is not None:
            location = f"{path}"
            if line_no is not None:
                location += f":{line_no}"
            location += ": "
        elif line_no is not None:
            location = f"line {line_no}: "
        super().__init__(f"{location}{message}", recoverable=False)
        self.path = path
        self.line_no = line_no
        self.record = record
