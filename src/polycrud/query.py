# src/polycrud/query.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union
from enum import Enum

from .errors import TranslationError
from .models import GetListParams, Pagination, Record, Sort
from .utils import validate_column_name


class Operator(Enum):
    EQ = "eq"
    NE = "ne"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    IN = "in"
    NOT_IN = "notIn"
    NULL = "null"
    NOT_NULL = "notNull"
    BETWEEN = "between"


# operators that ignore their value
VALUELESS = (Operator.NULL, Operator.NOT_NULL)


@dataclass(frozen=True)
class FilterCondition:
    field: str
    operator: Operator
    value: Any = None


def _parse_operator(name: Any, field_name: str) -> Operator:
    if isinstance(name, Operator):
        return name
    try:
        return Operator(name)
    except ValueError:
        raise TranslationError(
            f"Unknown filter operator '{name}' on field '{field_name}'"
        )


def _condition(field_name: str, value: Any) -> FilterCondition:
    if isinstance(value, FilterCondition):
        return value

    if value is None:
        return FilterCondition(field_name, Operator.NULL)

    if isinstance(value, (list, tuple)):
        return FilterCondition(field_name, Operator.IN, list(value))

    if isinstance(value, dict):
        if "operator" not in value:
            raise TranslationError(
                f"Malformed filter on field '{field_name}': expected {{'operator', 'value'}}"
            )
        op = _parse_operator(value["operator"], field_name)
        operand = value.get("value")

        if op in (Operator.IN, Operator.NOT_IN):
            if not isinstance(operand, (list, tuple)):
                raise TranslationError(f"'{op.value}' on '{field_name}' requires a list value")
            operand = list(operand)
        elif op == Operator.BETWEEN:
            if not isinstance(operand, (list, tuple)) or len(operand) != 2:
                raise TranslationError(f"'between' on '{field_name}' requires [low, high]")
            operand = list(operand)
        elif op in VALUELESS:
            operand = None
        elif "value" not in value:
            raise TranslationError(f"'{op.value}' on '{field_name}' requires a value")

        return FilterCondition(field_name, op, operand)

    return FilterCondition(field_name, Operator.EQ, value)


def parse_filter(filter: Optional[Dict[str, Any]]) -> List[FilterCondition]:
    """
    Normalize a filter map into conditions.

    Scalars become equality, None becomes is-null, lists become membership and
    ``{"operator": ..., "value": ...}`` objects map to their operator.
    """
    if not filter:
        return []
    return [_condition(k, v) for k, v in filter.items()]


def validate_pagination(pagination: Optional[Pagination]) -> Optional[Pagination]:
    if pagination is None:
        return None
    if not isinstance(pagination.page, int) or pagination.page < 1:
        raise TranslationError(f"Invalid page {pagination.page!r}: pages start at 1")
    if not isinstance(pagination.per_page, int) or pagination.per_page < 1:
        raise TranslationError(f"Invalid per_page {pagination.per_page!r}: must be positive")
    return pagination


@dataclass
class QueryBuilder:
    """Backend-neutral query: AND-ed conditions, one order-by, skip/take"""

    filters: List[FilterCondition] = field(default_factory=list)
    order_by_field: Optional[Tuple[str, bool]] = None  # (field, desc)
    skip_count: int = 0
    take_count: Optional[int] = None

    @classmethod
    def from_params(cls, params: GetListParams) -> QueryBuilder:
        builder = cls(filters=parse_filter(params.filter))
        if params.sort:
            builder.order_by(params.sort.field, params.sort.descending)
        pagination = validate_pagination(params.pagination)
        if pagination:
            builder.skip(pagination.offset).take(pagination.per_page)
        return builder

    def where(self, field: str, operator: Union[Operator, str], value: Any = None) -> QueryBuilder:
        """Add filter condition"""
        if isinstance(operator, str):
            operator = _parse_operator(operator, field)
        self.filters.append(FilterCondition(field, operator, value))
        return self

    def order_by(self, field: str, descending: bool = False) -> QueryBuilder:
        self.order_by_field = (field, descending)
        return self

    def skip(self, count: int) -> QueryBuilder:
        self.skip_count = count
        return self

    def take(self, count: int) -> QueryBuilder:
        self.take_count = count
        return self

    def to_sql_where(
        self, placeholder: str = "%s", contains_operator: str = "LIKE"
    ) -> Tuple[str, List[Any]]:
        """
        Convert to a parameterized SQL WHERE clause (without the keyword).

        ``contains_operator`` lets dialects with a case-insensitive match
        (PostgreSQL ILIKE) use it for substring filters.
        """
        if not self.filters:
            return "", []

        clauses = []
        params: List[Any] = []

        for f in self.filters:
            col = validate_column_name(f.field)
            if f.operator == Operator.EQ:
                clauses.append(f"{col} = {placeholder}")
                params.append(f.value)
            elif f.operator == Operator.NE:
                clauses.append(f"{col} != {placeholder}")
                params.append(f.value)
            elif f.operator == Operator.GT:
                clauses.append(f"{col} > {placeholder}")
                params.append(f.value)
            elif f.operator == Operator.GTE:
                clauses.append(f"{col} >= {placeholder}")
                params.append(f.value)
            elif f.operator == Operator.LT:
                clauses.append(f"{col} < {placeholder}")
                params.append(f.value)
            elif f.operator == Operator.LTE:
                clauses.append(f"{col} <= {placeholder}")
                params.append(f.value)
            elif f.operator in (Operator.IN, Operator.NOT_IN):
                if not f.value:
                    # empty IN matches nothing, empty NOT IN matches everything
                    clauses.append("1 = 0" if f.operator == Operator.IN else "1 = 1")
                    continue
                marks = ",".join([placeholder] * len(f.value))
                keyword = "IN" if f.operator == Operator.IN else "NOT IN"
                clauses.append(f"{col} {keyword} ({marks})")
                params.extend(f.value)
            elif f.operator == Operator.CONTAINS:
                clauses.append(f"{col} {contains_operator} {placeholder}")
                params.append(f"%{f.value}%")
            elif f.operator == Operator.STARTS_WITH:
                clauses.append(f"{col} LIKE {placeholder}")
                params.append(f"{f.value}%")
            elif f.operator == Operator.ENDS_WITH:
                clauses.append(f"{col} LIKE {placeholder}")
                params.append(f"%{f.value}")
            elif f.operator == Operator.NULL:
                clauses.append(f"{col} IS NULL")
            elif f.operator == Operator.NOT_NULL:
                clauses.append(f"{col} IS NOT NULL")
            elif f.operator == Operator.BETWEEN:
                clauses.append(f"{col} BETWEEN {placeholder} AND {placeholder}")
                params.extend(f.value)
            else:
                raise TranslationError(f"Operator {f.operator.value} has no SQL form")

        return " AND ".join(clauses), params


def _compare(value: Any, other: Any, op: Operator) -> bool:
    if value is None or other is None:
        return False
    try:
        if op == Operator.GT:
            return value > other
        if op == Operator.GTE:
            return value >= other
        if op == Operator.LT:
            return value < other
        return value <= other
    except TypeError:
        return False


def matches(record: Record, conditions: List[FilterCondition]) -> bool:
    """Evaluate AND-ed conditions against a record in memory"""
    for f in conditions:
        value = record.get(f.field)

        if f.operator == Operator.EQ:
            ok = value == f.value
        elif f.operator == Operator.NE:
            ok = value != f.value
        elif f.operator in (Operator.GT, Operator.GTE, Operator.LT, Operator.LTE):
            ok = _compare(value, f.value, f.operator)
        elif f.operator == Operator.IN:
            ok = value in f.value
        elif f.operator == Operator.NOT_IN:
            ok = value not in f.value
        elif f.operator == Operator.CONTAINS:
            ok = value is not None and str(f.value).lower() in str(value).lower()
        elif f.operator == Operator.STARTS_WITH:
            ok = value is not None and str(value).startswith(str(f.value))
        elif f.operator == Operator.ENDS_WITH:
            ok = value is not None and str(value).endswith(str(f.value))
        elif f.operator == Operator.NULL:
            ok = value is None
        elif f.operator == Operator.NOT_NULL:
            ok = value is not None
        elif f.operator == Operator.BETWEEN:
            low, high = f.value
            ok = _compare(value, low, Operator.GTE) and _compare(value, high, Operator.LTE)
        else:
            raise TranslationError(f"Operator {f.operator.value} not supported in memory")

        if not ok:
            return False

    return True


def sort_records(records: List[Record], sort: Optional[Sort]) -> List[Record]:
    """Stable single-field sort; nulls first ascending, last descending"""
    if not sort:
        return list(records)

    present = [r for r in records if r.get(sort.field) is not None]
    missing = [r for r in records if r.get(sort.field) is None]

    try:
        present = sorted(present, key=lambda r: r[sort.field], reverse=sort.descending)
    except TypeError:
        present = sorted(present, key=lambda r: str(r[sort.field]), reverse=sort.descending)

    return present + missing if sort.descending else missing + present


def paginate(records: List[Record], pagination: Optional[Pagination]) -> List[Record]:
    if not pagination:
        return list(records)
    start = pagination.offset
    return records[start:start + pagination.per_page]
