# outreach/services/segment_compiler.py
"""
Segment Query Compiler - turns a ConditionTree into an executable Predicate.

Every condition is checked against the tenant's AttributeSchema at compile
time: unknown keys, operators illegal for the key's type and malformed
operands raise SchemaViolation. Evaluation is a lookup in a strategy table
keyed by (AttributeType, Operator).

Semantics worth knowing:
- Every operator except is_not_set / is_empty also requires the attribute
  to be present and non-null, so absent attributes never match.
- Number operators compare as Decimal; non-numeric stored values never match.
- days_ago_* compare against today - N, where "more days ago" is an earlier
  date: days_ago_gt N means stored < today - N.
"""
import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from outreach.core.exceptions import SchemaViolation
from outreach.core.values import stringify, to_date, to_decimal, to_int
from outreach.models.base import utcnow
from outreach.schemas.segment import (
    AttributeSchema, AttributeType, Condition, ConditionTree, Logic, Operator,
    PRESENCE_EXEMPT_OPERATORS,
)

log = logging.getLogger("outreach.segment_compiler")

Evaluator = Callable[[Any, Any, date], bool]

DEFAULT_EXPIRY_PROPERTY = "expiry"


# ────────────────────────────────────────────
# Operand parsers (compile time)
# ────────────────────────────────────────────

def _operand_text(value: Any) -> str:
    if value is None:
        raise ValueError("a value is required")
    return stringify(value)


def _operand_decimal(value: Any) -> Decimal:
    number = to_decimal(value)
    if number is None:
        raise ValueError("a numeric value is required")
    return number


def _operand_range(value: Any) -> Tuple[Decimal, Decimal]:
    if not isinstance(value, Mapping) or "min" not in value or "max" not in value:
        raise ValueError("between expects {'min': ..., 'max': ...}")
    return _operand_decimal(value["min"]), _operand_decimal(value["max"])


def _operand_days(value: Any) -> int:
    if isinstance(value, Mapping):
        value = value.get("days")
    days = to_int(value)
    if days is None:
        raise ValueError("an integer day count is required")
    return days


def _operand_date(value: Any) -> date:
    parsed = to_date(value)
    if parsed is None:
        raise ValueError("an ISO date is required")
    return parsed


def _operand_set(value: Any) -> frozenset:
    if value is None:
        raise ValueError("a list of values is required")
    values = value if isinstance(value, (list, tuple, set, frozenset)) else [value]
    return frozenset(stringify(v) for v in values)


_COUNT_COMPARATORS: Dict[str, Callable[[int, int], bool]] = {
    Operator.EQUALS.value: lambda a, b: a == b,
    Operator.NOT_EQUALS.value: lambda a, b: a != b,
    Operator.GREATER_THAN.value: lambda a, b: a > b,
    Operator.LESS_THAN.value: lambda a, b: a < b,
    Operator.GREATER_THAN_OR_EQUAL.value: lambda a, b: a >= b,
    Operator.LESS_THAN_OR_EQUAL.value: lambda a, b: a <= b,
}


def _operand_count(value: Any) -> Tuple[Callable[[int, int], bool], int]:
    if not isinstance(value, Mapping):
        raise ValueError("count expects {'operator': ..., 'value': ...}")
    comparator = _COUNT_COMPARATORS.get(value.get("operator"))
    if comparator is None:
        raise ValueError(f"count operator must be one of {sorted(_COUNT_COMPARATORS)}")
    size = to_int(value.get("value"))
    if size is None:
        raise ValueError("count value must be an integer")
    return comparator, size


def _operand_membership(value: Any) -> Tuple[Optional[str], frozenset]:
    """any/all/none: a list of scalars, optionally {'values': [...], 'property': name}"""
    prop = None
    if isinstance(value, Mapping):
        prop = value.get("property")
        value = value.get("values")
    values = _operand_set(value)
    if not values:
        raise ValueError("at least one value is required")
    return prop, values


def _operand_property_days(value: Any) -> Tuple[str, int]:
    prop = DEFAULT_EXPIRY_PROPERTY
    if isinstance(value, Mapping):
        prop = value.get("property") or prop
    return prop, _operand_days(value)


def _operand_property_date(value: Any) -> Tuple[str, date]:
    prop = DEFAULT_EXPIRY_PROPERTY
    if isinstance(value, Mapping):
        prop = value.get("property") or prop
        value = value.get("date")
    return prop, _operand_date(value)


def _operand_property(value: Any) -> str:
    if isinstance(value, Mapping):
        return value.get("property") or DEFAULT_EXPIRY_PROPERTY
    return DEFAULT_EXPIRY_PROPERTY


def _no_operand(value: Any) -> None:
    return None


# ────────────────────────────────────────────
# Evaluators (stored value, operand, today) -> bool
# ────────────────────────────────────────────

def _numeric(compare: Callable[[Decimal, Decimal], bool]) -> Evaluator:
    def evaluate(stored, operand, today):
        number = to_decimal(stored)
        return number is not None and compare(number, operand)
    return evaluate


def _between(stored, operand, today):
    number = to_decimal(stored)
    low, high = operand
    return number is not None and low <= number <= high


def _dated(compare: Callable[[date, date], bool], offset: Callable[[date, Any], date]) -> Evaluator:
    def evaluate(stored, operand, today):
        stored_date = to_date(stored)
        return stored_date is not None and compare(stored_date, offset(today, operand))
    return evaluate


def _in_days(today: date, days: int) -> date:
    return today + timedelta(days=days)


def _days_ago(today: date, days: int) -> date:
    return today - timedelta(days=days)


def _absolute(today: date, operand: date) -> date:
    return operand


def _expires_within(stored, days, today):
    stored_date = to_date(stored)
    if stored_date is None:
        return False
    if days <= 0:
        return True
    return today <= stored_date <= today + timedelta(days=days)


def _expired_since(stored, days, today):
    stored_date = to_date(stored)
    if stored_date is None:
        return False
    if days <= 0:
        return True
    return today - timedelta(days=days) <= stored_date <= today


def _text(compare: Callable[[str, str], bool]) -> Evaluator:
    def evaluate(stored, operand, today):
        return compare(stringify(stored), operand)
    return evaluate


def _element_values(items: list, prop: Optional[str]) -> List[str]:
    values = []
    for item in items:
        if prop is not None:
            if isinstance(item, Mapping) and item.get(prop) is not None:
                values.append(stringify(item[prop]))
        elif not isinstance(item, (Mapping, list)):
            values.append(stringify(item))
    return values


def _array(check: Callable[[list, Any, date], bool]) -> Evaluator:
    def evaluate(stored, operand, today):
        return isinstance(stored, list) and check(stored, operand, today)
    return evaluate


def _is_empty(stored, operand, today):
    return stored is None or (isinstance(stored, list) and len(stored) == 0)


def _any_member(items, operand, today):
    prop, wanted = operand
    return any(value in wanted for value in _element_values(items, prop))


def _all_members(items, operand, today):
    prop, wanted = operand
    return wanted.issubset(_element_values(items, prop))


def _no_member(items, operand, today):
    prop, wanted = operand
    return not any(value in wanted for value in _element_values(items, prop))


def _exists(items, operand, today):
    for item in items:
        if isinstance(item, Mapping):
            if item.get(operand) is not None:
                return True
        elif stringify(item) == operand:
            return True
    return False


def _expiry_dates(items: list, prop: str) -> List[date]:
    dates = []
    for item in items:
        if isinstance(item, Mapping):
            parsed = to_date(item.get(prop))
            if parsed is not None:
                dates.append(parsed)
    return dates


def _any_expiry_in_days(items, operand, today):
    prop, days = operand
    target = today + timedelta(days=days)
    return any(d == target for d in _expiry_dates(items, prop))


def _any_expiry_within(items, operand, today):
    prop, days = operand
    end = today + timedelta(days=days)
    return any(today <= d <= end for d in _expiry_dates(items, prop))


def _any_expiry_expired_since(items, operand, today):
    prop, days = operand
    start = today - timedelta(days=days)
    return any(start <= d <= today for d in _expiry_dates(items, prop))


def _any_expiry_after(items, operand, today):
    prop, threshold = operand
    return any(d > threshold for d in _expiry_dates(items, prop))


def _any_expiry_today(items, operand, today):
    return any(d == today for d in _expiry_dates(items, operand))


def _always(stored, operand, today):
    return True


def _is_not_set(stored, operand, today):
    return stored is None


def _equal_str(a, b):
    return a == b


def _not_equal_str(a, b):
    return a != b


# ────────────────────────────────────────────
# Strategy table
# ────────────────────────────────────────────

_STRING_RULES = {
    Operator.EQUALS: (_operand_text, _text(_equal_str)),
    Operator.NOT_EQUALS: (_operand_text, _text(_not_equal_str)),
    Operator.CONTAINS: (_operand_text, _text(lambda s, v: v in s)),
    Operator.NOT_CONTAINS: (_operand_text, _text(lambda s, v: v not in s)),
    Operator.STARTS_WITH: (_operand_text, _text(lambda s, v: s.startswith(v))),
    Operator.ENDS_WITH: (_operand_text, _text(lambda s, v: s.endswith(v))),
    Operator.IS_SET: (_no_operand, _always),
    Operator.IS_NOT_SET: (_no_operand, _is_not_set),
}

_NUMBER_RULES = {
    Operator.EQUALS: (_operand_decimal, _numeric(lambda a, b: a == b)),
    Operator.NOT_EQUALS: (_operand_decimal, _numeric(lambda a, b: a != b)),
    Operator.GREATER_THAN: (_operand_decimal, _numeric(lambda a, b: a > b)),
    Operator.LESS_THAN: (_operand_decimal, _numeric(lambda a, b: a < b)),
    Operator.GREATER_THAN_OR_EQUAL: (_operand_decimal, _numeric(lambda a, b: a >= b)),
    Operator.LESS_THAN_OR_EQUAL: (_operand_decimal, _numeric(lambda a, b: a <= b)),
    Operator.BETWEEN: (_operand_range, _between),
}

_DATE_RULES = {
    Operator.EXPIRES_IN_DAYS_EQ: (_operand_days, _dated(lambda d, t: d == t, _in_days)),
    Operator.EXPIRES_IN_DAYS_GT: (_operand_days, _dated(lambda d, t: d > t, _in_days)),
    Operator.EXPIRES_IN_DAYS_GTE: (_operand_days, _dated(lambda d, t: d >= t, _in_days)),
    Operator.EXPIRES_IN_DAYS_LT: (_operand_days, _dated(lambda d, t: d < t, _in_days)),
    Operator.EXPIRES_IN_DAYS_LTE: (_operand_days, _dated(lambda d, t: d <= t, _in_days)),
    # "more days ago" is an earlier date, so gt/lt flip
    Operator.DAYS_AGO_EQ: (_operand_days, _dated(lambda d, t: d == t, _days_ago)),
    Operator.DAYS_AGO_GT: (_operand_days, _dated(lambda d, t: d < t, _days_ago)),
    Operator.DAYS_AGO_GTE: (_operand_days, _dated(lambda d, t: d <= t, _days_ago)),
    Operator.DAYS_AGO_LT: (_operand_days, _dated(lambda d, t: d > t, _days_ago)),
    Operator.DAYS_AGO_LTE: (_operand_days, _dated(lambda d, t: d >= t, _days_ago)),
    Operator.EXPIRES_WITHIN: (_operand_days, _expires_within),
    Operator.EXPIRED_SINCE: (_operand_days, _expired_since),
    Operator.EQUALS_DATE: (_operand_date, _dated(lambda d, t: d == t, _absolute)),
    Operator.BEFORE: (_operand_date, _dated(lambda d, t: d < t, _absolute)),
    Operator.AFTER: (_operand_date, _dated(lambda d, t: d > t, _absolute)),
    Operator.IS_SET: (_no_operand, _always),
    Operator.IS_NOT_SET: (_no_operand, _is_not_set),
}

_BOOLEAN_RULES = {
    Operator.IS_TRUE: (_no_operand, lambda stored, operand, today: stored is True),
    Operator.IS_FALSE: (_no_operand, lambda stored, operand, today: stored is False),
    Operator.IS_SET: (_no_operand, _always),
    Operator.IS_NOT_SET: (_no_operand, _is_not_set),
}

_ENUM_RULES = {
    Operator.EQUALS: (_operand_text, _text(_equal_str)),
    Operator.NOT_EQUALS: (_operand_text, _text(_not_equal_str)),
    Operator.IN: (_operand_set, _text(lambda s, values: s in values)),
    Operator.NOT_IN: (_operand_set, _text(lambda s, values: s not in values)),
}

_ARRAY_RULES = {
    Operator.COUNT: (_operand_count, _array(lambda items, op, today: op[0](len(items), op[1]))),
    Operator.NOT_EMPTY: (_no_operand, _array(lambda items, op, today: len(items) > 0)),
    Operator.IS_EMPTY: (_no_operand, _is_empty),
    Operator.ANY: (_operand_membership, _array(_any_member)),
    Operator.ALL: (_operand_membership, _array(_all_members)),
    Operator.NONE: (_operand_membership, _array(_no_member)),
    Operator.EXISTS: (_operand_text, _array(_exists)),
    Operator.ANY_EXPIRY_IN_DAYS: (_operand_property_days, _array(_any_expiry_in_days)),
    Operator.ANY_EXPIRY_WITHIN: (_operand_property_days, _array(_any_expiry_within)),
    Operator.ANY_EXPIRY_EXPIRED_SINCE: (_operand_property_days, _array(_any_expiry_expired_since)),
    Operator.ANY_EXPIRY_AFTER: (_operand_property_date, _array(_any_expiry_after)),
    Operator.ANY_EXPIRY_TODAY: (_operand_property, _array(_any_expiry_today)),
}

RULES: Dict[Tuple[AttributeType, Operator], Tuple[Callable[[Any], Any], Evaluator]] = {}
for _type, _rules in (
    (AttributeType.STRING, _STRING_RULES),
    (AttributeType.NUMBER, _NUMBER_RULES),
    (AttributeType.DATE, _DATE_RULES),
    (AttributeType.BOOLEAN, _BOOLEAN_RULES),
    (AttributeType.ENUM, _ENUM_RULES),
    (AttributeType.ARRAY, _ARRAY_RULES),
):
    for _operator, _rule in _rules.items():
        RULES[(_type, _operator)] = _rule


# ────────────────────────────────────────────
# Compiled forms
# ────────────────────────────────────────────

class CompiledCondition:
    """One validated condition bound to its evaluation function"""

    __slots__ = ("key", "operator", "attribute_type", "operand", "evaluator", "requires_presence")

    def __init__(self, key: str, operator: Operator, attribute_type: AttributeType, operand: Any, evaluator: Evaluator):
        self.key = key
        self.operator = operator
        self.attribute_type = attribute_type
        self.operand = operand
        self.evaluator = evaluator
        self.requires_presence = operator not in PRESENCE_EXEMPT_OPERATORS

    def evaluate(self, values: Mapping[str, Any], today: date) -> bool:
        stored = values.get(self.key)
        if self.requires_presence and stored is None:
            return False
        return bool(self.evaluator(stored, self.operand, today))

    def __repr__(self):
        return f"<CompiledCondition {self.key} {self.operator.value} {self.operand!r}>"


class Predicate:
    """Compiled, evaluable form of a ConditionTree"""

    def __init__(self, logic: Logic, conditions: List[CompiledCondition], target_type: str = "customer"):
        self.logic = logic
        self.conditions = conditions
        self.target_type = target_type

    @property
    def keys(self) -> List[str]:
        return sorted({c.key for c in self.conditions})

    def evaluate(self, values: Mapping[str, Any], today: Optional[date] = None) -> bool:
        """An empty predicate matches every target"""
        today = today or utcnow().date()
        if not self.conditions:
            return True
        if self.logic == Logic.OR:
            return any(c.evaluate(values, today) for c in self.conditions)
        return all(c.evaluate(values, today) for c in self.conditions)

    def __repr__(self):
        joined = f" {self.logic.value} ".join(repr(c) for c in self.conditions)
        return f"<Predicate {self.target_type}: {joined or 'ALL'}>"


class SegmentQueryCompiler:
    """Compiles tenant filters against the tenant's attribute schema"""

    def compile(
        self,
        schema: AttributeSchema,
        tree: Union[ConditionTree, Mapping[str, Any], None]
    ) -> Predicate:
        """
        Compile a ConditionTree into a Predicate.

        Raises:
            SchemaViolation: unknown key, illegal operator, malformed operand
        """
        if not isinstance(tree, ConditionTree):
            try:
                tree = ConditionTree.from_filter(tree)
            except ValueError as e:
                raise SchemaViolation(f"Malformed filter: {e}") from e

        compiled = [self._compile_condition(schema, condition) for condition in tree.conditions]
        predicate = Predicate(tree.logic, compiled, schema.target_type)
        log.debug(f"Compiled filter for tenant {schema.tenant_id}: {predicate}")
        return predicate

    def evaluate(self, predicate: Predicate, values: Mapping[str, Any], today: Optional[date] = None) -> bool:
        return predicate.evaluate(values, today)

    def _compile_condition(self, schema: AttributeSchema, condition: Condition) -> CompiledCondition:
        spec = schema.get(condition.key)
        if spec is None:
            raise SchemaViolation(
                f"Unknown attribute '{condition.key}' for {schema.target_type}",
                key=condition.key, operator=condition.operator
            )

        try:
            operator = Operator(condition.operator)
        except ValueError:
            raise SchemaViolation(
                f"Unknown operator '{condition.operator}'",
                key=condition.key, operator=condition.operator
            ) from None

        rule = RULES.get((spec.type, operator)) if spec.allows(operator) else None
        if rule is None:
            raise SchemaViolation(
                f"Operator '{operator.value}' is not allowed for {spec.type.value} attribute '{spec.key}'",
                key=condition.key, operator=operator.value
            )

        parse_operand, evaluator = rule
        try:
            operand = parse_operand(condition.value)
        except ValueError as e:
            raise SchemaViolation(
                f"Invalid value for '{spec.key}' {operator.value}: {e}",
                key=condition.key, operator=operator.value
            ) from e

        return CompiledCondition(spec.key, operator, spec.type, operand, evaluator)
