from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"


@dataclass
class Condition:
    field: str
    operator: ConditionOperator
    value: Any = None

    def evaluate(self, context: dict) -> bool:
        field_value = self._get_field_value(context, self.field)
        if field_value is None:
            return False
        return self._apply_operator(field_value, self.value)

    def _get_field_value(self, context: dict, field_path: str) -> Any:
        value = context
        for part in field_path.split("."):
            if isinstance(value, dict):
                value = value.get(part)
            else:
                return None
        return value

    def _apply_operator(self, field_value: Any, compare_value: Any) -> bool:
        op = self.operator
        if op == ConditionOperator.EQUALS: return field_value == compare_value
        if op == ConditionOperator.GREATER_THAN_OR_EQUAL: return field_value >= compare_value
        return False


@dataclass
class ConditionGroup:
    """All conditions must hold; groups nest."""
    conditions: list[Union[Condition, "ConditionGroup"]]

    def evaluate(self, context: dict) -> bool:
        return all(cond.evaluate(context) for cond in self.conditions)


def influencer_eligibility(threshold: int) -> ConditionGroup:
    """Fast-path rule; the atomic storage procedure makes the final decision."""
    return ConditionGroup(conditions=[
        Condition(field="profile.account_type", operator=ConditionOperator.EQUALS, value="standard"),
        Condition(field="referrals.completed", operator=ConditionOperator.GREATER_THAN_OR_EQUAL, value=threshold),
    ])
