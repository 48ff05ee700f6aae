import json
import logging
import math
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from bot_logic.facts import FACT_NAMES, RANDOM_CHANCE_SCALE

logger = logging.getLogger(__name__)


class RuleSetParseError(ValueError):
    """Raised when a stored rule payload is not valid JSON."""


class RuleRegistrationError(ValueError):
    """Raised when the engine rejects a rule (unsupported operator, bad priority, ...)."""


class UndefinedFactError(KeyError):
    """Raised when a condition references a fact missing from the fact set."""

    def __init__(self, fact: str):
        super().__init__(fact)
        self.fact = fact

    def __str__(self):
        return f"Undefined fact: {self.fact}"


class EventType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    CANCEL = "CANCEL"


class Operator(str, Enum):
    EQUAL = "equal"
    NOT_EQUAL = "notEqual"
    LESS_THAN = "lessThan"
    LESS_THAN_INCLUSIVE = "lessThanInclusive"
    GREATER_THAN = "greaterThan"
    GREATER_THAN_INCLUSIVE = "greaterThanInclusive"
    IN = "in"
    NOT_IN = "notIn"
    BETWEEN = "between"
    NOT_BETWEEN = "notBetween"


# Authoring shorthand, rewritten at registration to `randomChance lessThan <randomProbability>`
RANDOM_CHANCE_OPERATOR = "randomChance"

NUMERIC_OPERATORS = {
    Operator.LESS_THAN,
    Operator.LESS_THAN_INCLUSIVE,
    Operator.GREATER_THAN,
    Operator.GREATER_THAN_INCLUSIVE,
}
RANGE_OPERATORS = {Operator.BETWEEN, Operator.NOT_BETWEEN}
MEMBERSHIP_OPERATORS = {Operator.IN, Operator.NOT_IN}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _strict_equal(left: Any, right: Any) -> bool:
    # True must not equal 1 the way Python's == allows
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    return left == right


class RuleBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class FactRef(RuleBaseModel):
    """A condition value that is read from another fact at evaluation time."""

    fact: str

    @field_validator("fact")
    @classmethod
    def validate_fact(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Fact reference needs a name")
        return value.strip()


class Range(RuleBaseModel):
    min: float
    max: float

    @model_validator(mode="after")
    def check_bounds(self) -> "Range":
        if self.min > self.max:
            raise ValueError("Range min must not exceed max")
        return self


class Condition(RuleBaseModel):
    fact: str
    operator: Operator
    value: Union[FactRef, Range, bool, int, float, str, List[Any], None] = None
    # Flat range bounds as emitted by the strategy editor
    valueMin: Optional[float] = None
    valueMax: Optional[float] = None

    @field_validator("fact")
    @classmethod
    def validate_fact(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Condition fact is required")
        return value.strip()

    @model_validator(mode="before")
    @classmethod
    def expand_random_chance(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("operator") != RANDOM_CHANCE_OPERATOR:
            return data
        probability = data.get("randomProbability")
        if not _is_number(probability) or not 0 <= probability <= RANDOM_CHANCE_SCALE:
            raise ValueError(f"randomChance needs a randomProbability between 0 and {RANDOM_CHANCE_SCALE}")
        return {"fact": "randomChance", "operator": Operator.LESS_THAN.value, "value": probability}

    @model_validator(mode="after")
    def normalize_value(self) -> "Condition":
        if self.operator in RANGE_OPERATORS:
            if isinstance(self.value, Range):
                return self
            if self.valueMin is None or self.valueMax is None:
                raise ValueError(f"{self.operator.value} needs a {{min, max}} value")
            self.value = Range(min=self.valueMin, max=self.valueMax)
            return self

        # A bare string naming a known fact is a reference to it
        if isinstance(self.value, str) and self.value in FACT_NAMES:
            self.value = FactRef(fact=self.value)

        if self.value is None:
            raise ValueError(f"{self.operator.value} needs a value")
        if isinstance(self.value, Range):
            raise ValueError(f"{self.operator.value} does not take a range")

        if self.operator in MEMBERSHIP_OPERATORS:
            if not isinstance(self.value, (list, FactRef)):
                raise ValueError(f"{self.operator.value} needs a list value")
        elif self.operator in NUMERIC_OPERATORS and not isinstance(self.value, FactRef):
            if isinstance(self.value, str):
                try:
                    self.value = float(self.value)
                except ValueError as exc:
                    raise ValueError(f"{self.operator.value} needs a numeric value") from exc
            if not _is_number(self.value):
                raise ValueError(f"{self.operator.value} needs a numeric value")
        return self

    def resolve_value(self, facts: Dict[str, Any]) -> Any:
        if isinstance(self.value, FactRef):
            if self.value.fact not in facts:
                raise UndefinedFactError(self.value.fact)
            return facts[self.value.fact]
        return self.value

    def evaluate(self, facts: Dict[str, Any]) -> bool:
        if self.fact not in facts:
            raise UndefinedFactError(self.fact)
        return OPERATORS[self.operator](facts[self.fact], self.resolve_value(facts))


def _numeric(compare: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def _op(fact_value: Any, value: Any) -> bool:
        if not _is_number(fact_value) or not _is_number(value):
            return False
        return compare(fact_value, value)
    return _op


def _between(fact_value: Any, value: Range) -> bool:
    return _is_number(fact_value) and value.min <= fact_value <= value.max


def _not_between(fact_value: Any, value: Range) -> bool:
    return _is_number(fact_value) and (fact_value < value.min or fact_value > value.max)


def _contains(fact_value: Any, value: Any) -> bool:
    if not isinstance(value, (list, tuple, set)):
        return False
    return any(_strict_equal(fact_value, item) for item in value)


OPERATORS: Dict[Operator, Callable[[Any, Any], bool]] = {
    Operator.EQUAL: _strict_equal,
    Operator.NOT_EQUAL: lambda a, b: not _strict_equal(a, b),
    Operator.LESS_THAN: _numeric(lambda a, b: a < b),
    Operator.LESS_THAN_INCLUSIVE: _numeric(lambda a, b: a <= b),
    Operator.GREATER_THAN: _numeric(lambda a, b: a > b),
    Operator.GREATER_THAN_INCLUSIVE: _numeric(lambda a, b: a >= b),
    Operator.IN: _contains,
    Operator.NOT_IN: lambda a, b: not _contains(a, b),
    Operator.BETWEEN: _between,
    Operator.NOT_BETWEEN: _not_between,
}


class ConditionSet(RuleBaseModel):
    all: Optional[List[Condition]] = None
    any: Optional[List[Condition]] = None

    @model_validator(mode="after")
    def check_shape(self) -> "ConditionSet":
        if (self.all is None) == (self.any is None):
            raise ValueError("Conditions need exactly one of 'all' or 'any'")
        if not (self.all or self.any):
            raise ValueError("Conditions must not be empty")
        return self

    def evaluate(self, facts: Dict[str, Any]) -> bool:
        if self.all is not None:
            return all(condition.evaluate(facts) for condition in self.all)
        return any(condition.evaluate(facts) for condition in self.any)


class RuleEvent(RuleBaseModel):
    type: EventType
    params: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("params", mode="before")
    @classmethod
    def default_params(cls, value: Any) -> Any:
        return {} if value is None else value


class Rule(BaseModel):
    model_config = ConfigDict(extra="ignore")

    priority: int = Field(default=1, gt=0)
    conditions: ConditionSet
    event: RuleEvent
    name: Optional[str] = None


def parse_rule_set(raw: Any) -> List[Dict[str, Any]]:
    """
    Normalize a stored rule payload into a list of rule mappings.

    Accepts a JSON string, a list, or a single rule mapping. Rules that are
    missing ``conditions`` or ``event`` are dropped here; everything else is
    left for the engine to validate at registration.
    """
    if raw is None or raw == "":
        return []

    if isinstance(raw, (bytes, str)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise RuleSetParseError("Invalid JSON rule definition") from exc
        if raw is None:
            return []

    if isinstance(raw, dict):
        candidates = [raw]
    elif isinstance(raw, (list, tuple)):
        candidates = list(raw)
    else:
        logger.debug(f"Ignoring rule payload of type {type(raw).__name__}")
        return []

    rules = []
    for index, candidate in enumerate(candidates):
        if isinstance(candidate, Rule):
            rules.append(candidate.model_dump(exclude_none=True))
            continue
        if (
            not isinstance(candidate, dict)
            or not isinstance(candidate.get("conditions"), dict)
            or not isinstance(candidate.get("event"), dict)
        ):
            logger.debug(f"Dropping malformed rule #{index}: {candidate!r}")
            continue
        rules.append(candidate)
    return rules


class RuleEngine:
    """
    Forward-chaining evaluator over a fixed rule set.

    Every rule whose condition set holds fires its event. Events come back in
    descending priority, ties kept in declaration order.
    """

    def __init__(self, rules: Optional[List[Any]] = None):
        self._rules: List[Rule] = []
        for raw in rules or []:
            self.add_rule(raw)

    @property
    def rules(self) -> List[Rule]:
        return list(self._rules)

    def add_rule(self, raw: Union[Rule, Dict[str, Any]]) -> Rule:
        if isinstance(raw, Rule):
            rule = raw
        else:
            try:
                rule = Rule.model_validate(raw)
            except ValidationError as exc:
                first = exc.errors()[0] if exc.errors() else {}
                location = ".".join(str(part) for part in first.get("loc", ()))
                raise RuleRegistrationError(
                    f"Rule rejected at {location or 'rule'}: {first.get('msg', exc)}"
                ) from exc
        self._rules.append(rule)
        return rule

    def run(self, facts: Dict[str, Any]) -> List[RuleEvent]:
        ordered = sorted(enumerate(self._rules), key=lambda pair: (-pair[1].priority, pair[0]))
        return [rule.event for _, rule in ordered if rule.conditions.evaluate(facts)]


def evaluate(rules: List[Any], facts: Dict[str, Any]) -> List[RuleEvent]:
    """Register ``rules`` and run them once against ``facts``."""
    if not rules:
        return []
    return RuleEngine(rules).run(facts)
