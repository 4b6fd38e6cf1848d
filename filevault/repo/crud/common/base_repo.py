import operator
from typing import TypeVar, Generic, Optional, Type, List, Dict, Any

from sqlalchemy import asc, desc, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import ColumnProperty, InstrumentedAttribute
from sqlmodel import SQLModel, select

from filevault.core.logger import get_logger


ModelType = TypeVar("ModelType", bound=SQLModel)

logger = get_logger(__name__)

OPERATOR_MAP = {
    'eq': operator.eq,          # 等于: field__eq=value
    'ne': operator.ne,          # 不等于
    'lt': operator.lt,          # 小于
    'le': operator.le,          # 小于等于
    'gt': operator.gt,          # 大于
    'ge': operator.ge,          # 大于等于
    'in': 'in_',                # 包含于: field__in=[v1, v2]
    'not_in': 'not_in',         # 不包含于
    'like': 'like',             # 模糊查询 (区分大小写)
    'ilike': 'ilike',           # 模糊查询 (不区分大小写): field__ilike=value
    'icontains': 'icontains',   # 子串匹配 (不区分大小写，自动转义 % 和 _)
    'is_null': lambda c, v: c.is_(None) if v else c.isnot(None), # 是否为NULL
}


class BaseRepository(Generic[ModelType]):
    def __init__(self, db: AsyncSession, model: Type[ModelType], context: Optional[dict] = None):
        self.db = db
        self.model = model
        self.context = context or {}
        self.logger = logger

    # ==========================
    # 数据查询方法 (Query)
    # ==========================

    def _base_stmt(self):
        """
        构建基础查询语句，默认过滤掉软删除的记录 (如果模型支持)。
        """
        stmt = select(self.model)
        if hasattr(self.model, 'is_deleted'):
            stmt = stmt.where(getattr(self.model, 'is_deleted') == False)
        return stmt

    async def list_by_filters(
            self,
            *,
            filters: Optional[Dict[str, Any]] = None,
            sort_by: Optional[List[str]] = None,
            eager_loads: Optional[List[Any]] = None,
            stmt_in: Optional[Any] = None,
    ) -> List[ModelType]:
        """
        不分页的动态过滤查询，返回全部命中记录。
        filters 使用 `field__operator` 语法，sort_by 使用 ["-created_at", "name"] 语法。
        """
        stmt = stmt_in if stmt_in is not None else self._base_stmt()
        stmt = self._apply_dynamic_filters(stmt, dict(filters or {}))
        stmt = self.apply_ordering(stmt, sort_by or [])
        for option in eager_loads or []:
            stmt = stmt.options(option)
        return await self._run_and_scalars(stmt, "list_by_filters")

    def _get_column(self, field_name: str):
        """
        只返回映射到数据库列的属性。
        关系属性 (如 tags) 和模型上的普通属性 (如 SQLModel.metadata) 一律视为无效字段。
        """
        attr = getattr(self.model, field_name, None)
        if isinstance(attr, InstrumentedAttribute) and isinstance(attr.property, ColumnProperty):
            return attr
        return None

    def apply_ordering(self, stmt, order_by: List[str]):
        if not order_by:
            if hasattr(self.model, "created_at"):
                return stmt.order_by(desc(self.model.created_at), asc(self.model.id))  # 默认排序
            return stmt

        for sort_field in order_by:
            order_func = asc
            if sort_field.startswith('-'):
                sort_field = sort_field[1:]
                order_func = desc

            column = self._get_column(sort_field)
            if column is not None:
                stmt = stmt.order_by(order_func(column))
            else:
                logger.warning(f"Ignored invalid sort field: {sort_field}")
        return stmt

    def _build_condition(self, key: str, value: Any):
        """
        根据 key 和 value 构建单个查询条件。
        """
        parts = key.split('__')
        field_name = parts[0]
        op_name = parts[1] if len(parts) > 1 else 'eq'

        column = self._get_column(field_name)
        if column is None:
            logger.warning(f"Ignored invalid filter field: {field_name}")
            return None

        op_func = OPERATOR_MAP.get(op_name)
        if op_func is None:
            logger.warning(f"Ignored invalid filter operator: {op_name}")
            return None

        if isinstance(op_func, str):
            if op_name in ('like', 'ilike'):
                return getattr(column, op_func)(f"%{value}%")
            if op_name == 'icontains':
                return column.icontains(value, autoescape=True)
            return getattr(column, op_func)(value)
        return op_func(column, value)

    def _apply_dynamic_filters(self, stmt, filters: Dict[str, Any]):
        """
        动态过滤器，理解 `field__operator` 语法，支持 `__or__` 分组。
        """
        if not filters:
            return stmt

        or_conditions_data = filters.pop('__or__', {})

        # 处理 AND 条件
        for key, value in filters.items():
            if value is None or value == '':
                continue
            condition = self._build_condition(key, value)
            if condition is not None:
                stmt = stmt.where(condition)

        # 处理 OR 条件
        if or_conditions_data:
            or_clauses = []
            for key, value in or_conditions_data.items():
                if value is None or value == '':
                    continue
                condition = self._build_condition(key, value)
                if condition is not None:
                    or_clauses.append(condition)

            if or_clauses:
                stmt = stmt.where(or_(*or_clauses))

        return stmt

    async def _run_and_scalars(self, stmt, method: str):
        try:
            result = await self.db.execute(stmt)
            return list(result.scalars().all())
        except Exception as e:
            logger.error(f"[{method}] Failed: {e}")
            raise
