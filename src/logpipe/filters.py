"""
logpipe Record Filters

Filters compile "field<op>value" expressions into predicates over Records
and combine them with AND semantics.

Supported operators, in the order they are tried:

    !=   not equal
    ~    regex search (unanchored, case-sensitive)
    >=   greater-than-or-equal (lexicographic)
    <=   less-than-or-equal (lexicographic)
    =    equal
    >    greater-than (lexicographic)
    <    less-than (lexicographic)

Values are always compared through their canonical string form, so
"count>=10" compares strings, not numbers.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from logpipe.errors import FilterCompileError
from logpipe.record import canonical_string


Predicate = Callable[[Mapping[str, Any]], bool]


class FilterOperator(Enum):
    """Comparison operators for field filters"""
    NOT_EQUAL = "!="
    REGEX = "~"
    GREATER_EQUAL = ">="
    LESS_EQUAL = "<="
    EQUAL = "="
    GREATER = ">"
    LESS = "<"


# Multi-character operators must come before their single-character prefixes
OPERATOR_PRIORITY = (
    FilterOperator.NOT_EQUAL,
    FilterOperator.REGEX,
    FilterOperator.GREATER_EQUAL,
    FilterOperator.LESS_EQUAL,
    FilterOperator.EQUAL,
    FilterOperator.GREATER,
    FilterOperator.LESS,
)


@dataclass(frozen=True)
class FieldFilter:
    """
    Matches records by comparing one field against a literal.

    Attributes:
        field: Name of the record field to inspect
        operator: Comparison operator
        value: Literal to compare against
        pattern: Compiled regex (only for the ~ operator)
    """
    field: str
    operator: FilterOperator
    value: str
    pattern: re.Pattern[str] | None = None

    def matches(self, record: Mapping[str, Any]) -> bool:
        """
        Check the record against this filter.

        A record without the field never matches, whatever the operator.
        """
        if self.field not in record:
            return False

        actual = canonical_string(record[self.field])
        op = self.operator

        if op is FilterOperator.EQUAL:
            return actual == self.value
        if op is FilterOperator.NOT_EQUAL:
            return actual != self.value
        if op is FilterOperator.GREATER:
            return actual > self.value
        if op is FilterOperator.LESS:
            return actual < self.value
        if op is FilterOperator.GREATER_EQUAL:
            return actual >= self.value
        if op is FilterOperator.LESS_EQUAL:
            return actual <= self.value
        if op is FilterOperator.REGEX:
            return self.pattern is not None and self.pattern.search(actual) is not None
        raise AssertionError(f"Unhandled filter operator: {op}")

    def __call__(self, record: Mapping[str, Any]) -> bool:
        return self.matches(record)

    def __str__(self) -> str:
        return f"{self.field}{self.operator.value}{self.value}"


@dataclass(frozen=True)
class CompositeFilter:
    """AND of child predicates. An empty composite matches everything."""
    filters: tuple[Predicate, ...] = ()

    def matches(self, record: Mapping[str, Any]) -> bool:
        return all(child(record) for child in self.filters)

    def __call__(self, record: Mapping[str, Any]) -> bool:
        return self.matches(record)

    def __len__(self) -> int:
        return len(self.filters)


def compile_filter(expression: str) -> FieldFilter:
    """
    Compile a "field<op>value" expression.

    The first operator in priority order that occurs anywhere in the
    expression decides the split, so "level!=error" is a != filter and
    "count>=10" is a >= filter.

    Args:
        expression: Filter expression text

    Returns:
        Compiled FieldFilter

    Raises:
        FilterCompileError: If no operator is present or the regex is invalid

    Examples:
        >>> compile_filter("level=error").operator
        <FilterOperator.EQUAL: '='>
        >>> compile_filter("msg~^conn").value
        '^conn'
    """
    for op in OPERATOR_PRIORITY:
        idx = expression.find(op.value)
        if idx == -1:
            continue

        field_name = expression[:idx]
        value = expression[idx + len(op.value):]

        pattern = None
        if op is FilterOperator.REGEX:
            try:
                pattern = re.compile(value)
            except re.error as e:
                raise FilterCompileError(f"invalid regex in filter: {e}", expression)

        return FieldFilter(field=field_name, operator=op, value=value, pattern=pattern)

    raise FilterCompileError(f"invalid filter expression: {expression}", expression)


def build_filter(expressions: Iterable[str]) -> CompositeFilter:
    """
    Compile every expression and AND them together.

    Raises:
        FilterCompileError: On the first expression that fails to compile
    """
    return CompositeFilter(tuple(compile_filter(expr) for expr in expressions))
