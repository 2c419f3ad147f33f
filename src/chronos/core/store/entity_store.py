"""EntityStore 内存实现

项目、分类、任务按 ID 保存在内存字典中（保持创建顺序）。
实体不可删除，只能停用；更新通过 model_copy 生成新实例。
"""

from datetime import datetime
from typing import Any

from ..exceptions import MutationRejected, PersistenceError
from ..ids import IdAllocator
from ..models.entities import Category, LedgerHeader, Project, Task
from ..models.enums import EntityKind, IssueKind
from ..models.snapshot import ValidationIssue

# 区分 "未传参" 与 "显式清空为 None"
UNSET: Any = object()


class EntityStore:
    """Project / Category / Task 的内存存储"""

    def __init__(self, allocator: IdAllocator | None = None) -> None:
        self._allocator = allocator or IdAllocator()
        self._projects: dict[str, Project] = {}
        self._categories: dict[str, Category] = {}
        self._tasks: dict[str, Task] = {}

    @classmethod
    def from_header(
        cls,
        header: LedgerHeader,
        allocator: IdAllocator | None = None,
    ) -> "EntityStore":
        """从 Ledger 头部重建，并把已有 ID 登记到分配器

        Raises:
            PersistenceError: 同一类型内出现重复 ID
        """
        store = cls(allocator)
        tables: list[tuple[EntityKind, list, dict]] = [
            (EntityKind.PROJECT, header.projects, store._projects),
            (EntityKind.CATEGORY, header.categories, store._categories),
            (EntityKind.TASK, header.tasks, store._tasks),
        ]
        for kind, records, target in tables:
            for record in records:
                if record.id in target:
                    raise PersistenceError(f"duplicate {kind.value} id in header: {record.id}")
                if kind is EntityKind.TASK and record.created_at is None:
                    record = record.model_copy(update={"created_at": header.created_at})
                target[record.id] = record
            store._allocator.reserve(kind, target.keys())
        return store

    def to_header(self, created_at: datetime) -> LedgerHeader:
        return LedgerHeader(
            created_at=created_at,
            projects=list(self._projects.values()),
            categories=list(self._categories.values()),
            tasks=list(self._tasks.values()),
        )

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    @property
    def projects(self) -> list[Project]:
        return list(self._projects.values())

    @property
    def categories(self) -> list[Category]:
        return list(self._categories.values())

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks.values())

    def project(self, project_id: str) -> Project | None:
        return self._projects.get(project_id)

    def category(self, category_id: str) -> Category | None:
        return self._categories.get(category_id)

    def task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def has_task(self, task_id: str) -> bool:
        return task_id in self._tasks

    def require_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise MutationRejected(f"task not found: {task_id}")
        return task

    def reference_issues(self) -> list[ValidationIssue]:
        """任务引用了不存在的项目/分类时的诊断，按任务 ID 排序"""
        issues: list[ValidationIssue] = []
        for task_id in sorted(self._tasks):
            task = self._tasks[task_id]
            if task.project_id not in self._projects:
                issues.append(
                    ValidationIssue(
                        kind=IssueKind.MISSING_PROJECT_REFERENCE,
                        task_id=task_id,
                        message=f"task references missing project {task.project_id}",
                    )
                )
            if task.category_id is not None and task.category_id not in self._categories:
                issues.append(
                    ValidationIssue(
                        kind=IssueKind.MISSING_CATEGORY_REFERENCE,
                        task_id=task_id,
                        message=f"task references missing category {task.category_id}",
                    )
                )
        return issues

    # ------------------------------------------------------------------
    # Project
    # ------------------------------------------------------------------

    def create_project(self, name: str, color: str | None = None) -> Project:
        project = Project(
            id=self._allocator.allocate(EntityKind.PROJECT),
            name=_required_text(name, "project name"),
            color=color,
        )
        self._projects[project.id] = project
        return project

    def update_project(
        self,
        project_id: str,
        name: str | None = None,
        color: str | None = UNSET,
    ) -> Project:
        project = self._require(self._projects, project_id, "project")
        update: dict[str, Any] = {}
        if name is not None:
            update["name"] = _required_text(name, "project name")
        if color is not UNSET:
            update["color"] = color
        project = project.model_copy(update=update)
        self._projects[project_id] = project
        return project

    def set_project_active(self, project_id: str, active: bool) -> Project:
        project = self._require(self._projects, project_id, "project")
        project = project.model_copy(update={"active": active})
        self._projects[project_id] = project
        return project

    # ------------------------------------------------------------------
    # Category
    # ------------------------------------------------------------------

    def create_category(self, name: str, description: str | None = None) -> Category:
        category = Category(
            id=self._allocator.allocate(EntityKind.CATEGORY),
            name=_required_text(name, "category name"),
            description=description,
        )
        self._categories[category.id] = category
        return category

    def update_category(
        self,
        category_id: str,
        name: str | None = None,
        description: str | None = UNSET,
    ) -> Category:
        category = self._require(self._categories, category_id, "category")
        update: dict[str, Any] = {}
        if name is not None:
            update["name"] = _required_text(name, "category name")
        if description is not UNSET:
            update["description"] = description
        category = category.model_copy(update=update)
        self._categories[category_id] = category
        return category

    def set_category_active(self, category_id: str, active: bool) -> Category:
        category = self._require(self._categories, category_id, "category")
        category = category.model_copy(update={"active": active})
        self._categories[category_id] = category
        return category

    # ------------------------------------------------------------------
    # Task
    # ------------------------------------------------------------------

    def create_task(
        self,
        project_id: str,
        description: str,
        created_at: datetime,
        category_id: str | None = None,
    ) -> Task:
        """创建任务

        Raises:
            MutationRejected: 项目/分类不存在，或描述为空
        """
        self._require(self._projects, project_id, "project")
        if category_id is not None:
            self._require(self._categories, category_id, "category")
        description = _required_text(description, "task description")

        task = Task(
            id=self._allocator.allocate(EntityKind.TASK),
            description=description,
            project_id=project_id,
            category_id=category_id,
            created_at=created_at,
        )
        self._tasks[task.id] = task
        return task

    def update_task(
        self,
        task_id: str,
        description: str | None = None,
        project_id: str | None = None,
        category_id: str | None = UNSET,
    ) -> Task:
        """修改任务；事件只引用 ID，历史不受影响"""
        task = self.require_task(task_id)
        update: dict[str, Any] = {}
        if description is not None:
            update["description"] = _required_text(description, "task description")
        if project_id is not None:
            self._require(self._projects, project_id, "project")
            update["project_id"] = project_id
        if category_id is not UNSET:
            if category_id is not None:
                self._require(self._categories, category_id, "category")
            update["category_id"] = category_id
        task = task.model_copy(update=update)
        self._tasks[task_id] = task
        return task

    def set_task_active(self, task_id: str, active: bool) -> Task:
        task = self.require_task(task_id)
        task = task.model_copy(update={"active": active})
        self._tasks[task_id] = task
        return task

    @staticmethod
    def _require(table: dict[str, Any], entity_id: str, label: str) -> Any:
        entity = table.get(entity_id)
        if entity is None:
            raise MutationRejected(f"{label} not found: {entity_id}")
        return entity


def _required_text(value: str, field_name: str) -> str:
    if not value or not value.strip():
        raise MutationRejected(f"{field_name} must not be empty")
    return value
