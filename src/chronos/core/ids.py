"""ID 分配器

新 ID 使用 ULID；从磁盘加载的 ID 视为不透明字符串并登记，
之后绝不重复签发。生成冲突时重试而不是报错。
"""

from collections.abc import Callable, Iterable

import structlog
from ulid import ULID

from .models.enums import EntityKind

log = structlog.get_logger()


def _new_ulid() -> str:
    return str(ULID())


class IdAllocator:
    """按实体类型分配唯一 ID"""

    _max_attempts = 8

    def __init__(self, factory: Callable[[], str] = _new_ulid) -> None:
        """
        Args:
            factory: ID 生成函数，默认生成 ULID 字符串
        """
        self._factory = factory
        self._issued: dict[EntityKind, set[str]] = {kind: set() for kind in EntityKind}

    def reserve(self, kind: EntityKind, ids: Iterable[str]) -> None:
        """登记已存在的 ID（例如从文件加载）"""
        self._issued[kind].update(ids)

    def is_known(self, kind: EntityKind, entity_id: str) -> bool:
        return entity_id in self._issued[kind]

    def allocate(self, kind: EntityKind) -> str:
        """生成一个该类型下从未签发过的 ID

        Raises:
            RuntimeError: 连续多次生成都冲突
        """
        issued = self._issued[kind]
        for attempt in range(1, self._max_attempts + 1):
            candidate = self._factory()
            if candidate and candidate not in issued:
                issued.add(candidate)
                return candidate
            log.warning("id_collision_retry", kind=kind.value, attempt=attempt)

        raise RuntimeError(f"failed to allocate {kind.value} id after retries")
