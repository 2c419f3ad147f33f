"""实体模型 -- Project / Category / Task 与 Ledger 头部

实体由用户显式创建，从不物理删除；停用（active=False）只把它从
快速创建入口隐藏，历史事件仍通过 ID 引用它。
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import AwareDatetime, BaseModel, Field, computed_field, model_validator

# 描述为空时的标题占位
NO_DESCRIPTION = "(no description)"

SCHEMA_VERSION = 1


def _active_from_archived(data: Any) -> Any:
    # 旧版工具用 archived 表示停用
    if isinstance(data, dict) and "archived" in data:
        archived = data["archived"]
        data = {k: v for k, v in data.items() if k != "archived"}
        if "active" not in data and isinstance(archived, bool):
            data["active"] = not archived
    return data


class Project(BaseModel):
    """项目"""

    id: str = Field(description="唯一标识")
    name: str = Field(description="项目名称，不要求唯一")
    color: str | None = Field(default=None, description="显示颜色，仅供 UI 参考")
    active: bool = Field(default=True, description="是否启用")

    @model_validator(mode="before")
    @classmethod
    def _from_archived(cls, data: Any) -> Any:
        return _active_from_archived(data)


class Category(BaseModel):
    """分类，与项目无关的可选分组"""

    id: str = Field(description="唯一标识")
    name: str = Field(description="分类名称")
    description: str | None = Field(default=None, description="分类描述")
    active: bool = Field(default=True, description="是否启用")

    @model_validator(mode="before")
    @classmethod
    def _from_archived(cls, data: Any) -> Any:
        return _active_from_archived(data)


class Task(BaseModel):
    """任务

    description 是自由文本，只有第一行有结构意义（用作标题）。
    """

    id: str = Field(description="唯一标识")
    description: str = Field(default="", description="完整描述")
    project_id: str = Field(description="所属项目 ID")
    category_id: str | None = Field(default=None, description="所属分类 ID")
    active: bool = Field(default=True, description="是否启用")
    created_at: AwareDatetime | None = Field(default=None, description="创建时间")

    @model_validator(mode="before")
    @classmethod
    def _description_from_title(cls, data: Any) -> Any:
        # 只有 title 的旧记录
        if isinstance(data, dict) and "description" not in data and "title" in data:
            data = {**data, "description": data["title"]}
        return data

    @model_validator(mode="before")
    @classmethod
    def _from_archived(cls, data: Any) -> Any:
        return _active_from_archived(data)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def title(self) -> str:
        """描述的第一行"""
        for line in self.description.splitlines():
            return line
        return NO_DESCRIPTION


class LedgerHeader(BaseModel):
    """Ledger 文件头部：所有实体表"""

    schema_version: int = Field(default=SCHEMA_VERSION, description="Schema 版本号")
    created_at: AwareDatetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Ledger 创建时间",
    )
    projects: list[Project] = Field(default_factory=list)
    categories: list[Category] = Field(default_factory=list)
    tasks: list[Task] = Field(default_factory=list)
