# outreach/schemas/segment.py
"""
Pydantic schemas for tenant attribute schemas and segment filters.

The filter DSL consumed from tenant configuration is:
    {"logic": "AND" | "OR", "conditions": [{"key": ..., "operator": ..., "value": ...}]}
"""
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict, Any, Iterable
from enum import Enum

from outreach.core.exceptions import SchemaViolation
from outreach.core.values import to_date, to_decimal


# ────────────────────────────────────────────
# Enums
# ────────────────────────────────────────────

class AttributeType(str, Enum):
    """Declared type of a target attribute"""
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    ENUM = "enum"
    ARRAY = "array"

    @classmethod
    def parse(cls, raw: str) -> "AttributeType":
        if raw == "integer":
            return cls.NUMBER
        return cls(raw)


class Operator(str, Enum):
    """Closed set of filter operators"""
    # String
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IS_SET = "is_set"
    IS_NOT_SET = "is_not_set"

    # Number
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    BETWEEN = "between"

    # Date
    EXPIRES_IN_DAYS_EQ = "expires_in_days_eq"
    EXPIRES_IN_DAYS_GT = "expires_in_days_gt"
    EXPIRES_IN_DAYS_GTE = "expires_in_days_gte"
    EXPIRES_IN_DAYS_LT = "expires_in_days_lt"
    EXPIRES_IN_DAYS_LTE = "expires_in_days_lte"
    DAYS_AGO_EQ = "days_ago_eq"
    DAYS_AGO_GT = "days_ago_gt"
    DAYS_AGO_GTE = "days_ago_gte"
    DAYS_AGO_LT = "days_ago_lt"
    DAYS_AGO_LTE = "days_ago_lte"
    EXPIRES_WITHIN = "expires_within"
    EXPIRED_SINCE = "expired_since"
    EQUALS_DATE = "equals_date"
    BEFORE = "before"
    AFTER = "after"

    # Boolean
    IS_TRUE = "is_true"
    IS_FALSE = "is_false"

    # Enum
    IN = "in"
    NOT_IN = "not_in"

    # Array
    COUNT = "count"
    NOT_EMPTY = "not_empty"
    IS_EMPTY = "is_empty"
    ANY = "any"
    ALL = "all"
    NONE = "none"
    EXISTS = "exists"
    ANY_EXPIRY_IN_DAYS = "any_expiry_in_days"
    ANY_EXPIRY_WITHIN = "any_expiry_within"
    ANY_EXPIRY_AFTER = "any_expiry_after"
    ANY_EXPIRY_EXPIRED_SINCE = "any_expiry_expired_since"
    ANY_EXPIRY_TODAY = "any_expiry_today"


class Logic(str, Enum):
    AND = "AND"
    OR = "OR"


# Operators that do not require the attribute to be present
PRESENCE_EXEMPT_OPERATORS = frozenset({Operator.IS_NOT_SET, Operator.IS_EMPTY})

OPERATORS_BY_TYPE: Dict[AttributeType, tuple] = {
    AttributeType.STRING: (
        Operator.EQUALS, Operator.NOT_EQUALS, Operator.CONTAINS, Operator.NOT_CONTAINS,
        Operator.STARTS_WITH, Operator.ENDS_WITH, Operator.IS_SET, Operator.IS_NOT_SET,
    ),
    AttributeType.NUMBER: (
        Operator.EQUALS, Operator.NOT_EQUALS, Operator.GREATER_THAN, Operator.LESS_THAN,
        Operator.GREATER_THAN_OR_EQUAL, Operator.LESS_THAN_OR_EQUAL, Operator.BETWEEN,
    ),
    AttributeType.DATE: (
        Operator.EXPIRED_SINCE, Operator.EXPIRES_WITHIN,
        Operator.DAYS_AGO_EQ, Operator.DAYS_AGO_GT, Operator.DAYS_AGO_GTE,
        Operator.DAYS_AGO_LT, Operator.DAYS_AGO_LTE,
        Operator.EXPIRES_IN_DAYS_EQ, Operator.EXPIRES_IN_DAYS_GT, Operator.EXPIRES_IN_DAYS_GTE,
        Operator.EXPIRES_IN_DAYS_LT, Operator.EXPIRES_IN_DAYS_LTE,
        Operator.EQUALS_DATE, Operator.BEFORE, Operator.AFTER,
        Operator.IS_SET, Operator.IS_NOT_SET,
    ),
    AttributeType.BOOLEAN: (
        Operator.IS_TRUE, Operator.IS_FALSE, Operator.IS_SET, Operator.IS_NOT_SET,
    ),
    AttributeType.ENUM: (
        Operator.EQUALS, Operator.NOT_EQUALS, Operator.IN, Operator.NOT_IN,
    ),
    AttributeType.ARRAY: (
        Operator.COUNT, Operator.NOT_EMPTY, Operator.IS_EMPTY,
        Operator.ANY_EXPIRY_IN_DAYS, Operator.ANY_EXPIRY_WITHIN, Operator.ANY_EXPIRY_AFTER,
        Operator.ANY_EXPIRY_EXPIRED_SINCE, Operator.ANY_EXPIRY_TODAY,
        Operator.ANY, Operator.ALL, Operator.NONE, Operator.EXISTS,
    ),
}


# ────────────────────────────────────────────
# Attribute schema
# ────────────────────────────────────────────

class AttributeSpec(BaseModel):
    """Declared type and constraints of one attribute key"""
    key: str = Field(..., pattern=r"^[a-zA-Z0-9_]+$")
    type: AttributeType
    required: bool = False
    label: Optional[str] = None
    options: Optional[List[str]] = Field(None, description="Legal values of an enum attribute")
    item_type: Optional[str] = Field(None, description="Element type of an array attribute")
    properties: Optional[List[str]] = Field(None, description="Property names of array-of-object elements")
    builtin: bool = False

    def allows(self, operator: Operator) -> bool:
        return operator in OPERATORS_BY_TYPE[self.type]

    def check_value(self, value: Any) -> Optional[str]:
        """Return a problem description if `value` does not fit the declared type."""
        if self.type == AttributeType.STRING:
            if not isinstance(value, str):
                return "expected a string"
        elif self.type == AttributeType.NUMBER:
            if to_decimal(value) is None:
                return "expected a number"
        elif self.type == AttributeType.DATE:
            if to_date(value) is None:
                return "expected an ISO date"
        elif self.type == AttributeType.BOOLEAN:
            if not isinstance(value, bool):
                return "expected a boolean"
        elif self.type == AttributeType.ENUM:
            if not isinstance(value, str):
                return "expected a string option"
            if self.options and value not in self.options:
                return f"expected one of {self.options}"
        elif self.type == AttributeType.ARRAY:
            if not isinstance(value, list):
                return "expected a list"
            if self.item_type == "object" and not all(isinstance(item, dict) for item in value):
                return "expected a list of objects"
        return None


_CUSTOMER_BUILTINS = (
    AttributeSpec(key="id", type=AttributeType.NUMBER, builtin=True),
    AttributeSpec(key="external_id", type=AttributeType.STRING, builtin=True),
    AttributeSpec(key="name", type=AttributeType.STRING, builtin=True),
    AttributeSpec(key="phone", type=AttributeType.STRING, builtin=True),
    AttributeSpec(key="email", type=AttributeType.STRING, builtin=True),
    AttributeSpec(key="created_at", type=AttributeType.DATE, builtin=True),
    AttributeSpec(key="updated_at", type=AttributeType.DATE, builtin=True),
)

_SERVICE_BUILTINS = _CUSTOMER_BUILTINS + (
    AttributeSpec(key="expiry_at", type=AttributeType.DATE, builtin=True),
    AttributeSpec(key="status", type=AttributeType.STRING, builtin=True),
    AttributeSpec(key="days_until_expiry", type=AttributeType.NUMBER, builtin=True),
)

BUILTIN_ATTRIBUTES = {
    "customer": {spec.key: spec for spec in _CUSTOMER_BUILTINS},
    "service": {spec.key: spec for spec in _SERVICE_BUILTINS},
}


class AttributeSchema(BaseModel):
    """
    A tenant's registry of attribute keys for one target type.

    Built-in target fields (name, phone, email, ...) are always part of the
    schema; tenant-declared keys live in the target's `data` map.
    """
    tenant_id: str
    target_type: str = "customer"
    attributes: Dict[str, AttributeSpec] = Field(default_factory=dict)

    @model_validator(mode='after')
    def merge_builtins(self):
        builtins = BUILTIN_ATTRIBUTES.get(self.target_type)
        if builtins is None:
            raise ValueError(f"Unknown target type '{self.target_type}'")
        merged = dict(builtins)
        for key, spec in self.attributes.items():
            if key in builtins and not spec.builtin:
                raise ValueError(f"'{key}' is a built-in {self.target_type} field")
            merged[key] = spec
        self.attributes = merged
        return self

    @classmethod
    def from_specs(cls, tenant_id: str, target_type: str, specs: Iterable[AttributeSpec]) -> "AttributeSchema":
        return cls(tenant_id=tenant_id, target_type=target_type, attributes={s.key: s for s in specs})

    def get(self, key: str) -> Optional[AttributeSpec]:
        return self.attributes.get(key)

    def keys(self) -> List[str]:
        return list(self.attributes.keys())

    def custom_keys(self) -> List[str]:
        return [key for key, spec in self.attributes.items() if not spec.builtin]

    def validate_values(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate a target's attribute map at write time.

        Raises:
            SchemaViolation: undeclared key, missing required key or wrong type
        """
        for key, value in data.items():
            spec = self.attributes.get(key)
            if spec is None or spec.builtin:
                raise SchemaViolation(f"Attribute '{key}' is not declared for {self.target_type}", key=key)
            if value is None:
                continue
            problem = spec.check_value(value)
            if problem:
                raise SchemaViolation(f"Invalid value for '{key}': {problem}", key=key)

        for key, spec in self.attributes.items():
            if spec.required and not spec.builtin and data.get(key) is None:
                raise SchemaViolation(f"Required attribute '{key}' is missing", key=key)

        return data


# ────────────────────────────────────────────
# Condition tree
# ────────────────────────────────────────────

class Condition(BaseModel):
    """Atomic condition (key, operator, value)"""
    key: str
    operator: str
    value: Any = None

    @model_validator(mode='before')
    @classmethod
    def accept_legacy_field(cls, data):
        """Older filters name the key `field`"""
        if isinstance(data, dict) and "key" not in data and "field" in data:
            data = dict(data)
            data["key"] = data.pop("field")
        return data


class ConditionTree(BaseModel):
    """Flat AND/OR combination of conditions"""
    logic: Logic = Logic.AND
    conditions: List[Condition] = Field(default_factory=list)

    @model_validator(mode='before')
    @classmethod
    def normalize_logic(cls, data):
        if isinstance(data, dict) and isinstance(data.get("logic"), str):
            data = dict(data)
            data["logic"] = data["logic"].upper()
        return data

    @classmethod
    def from_filter(cls, raw: Optional[Dict[str, Any]]) -> "ConditionTree":
        return cls.model_validate(raw or {})
