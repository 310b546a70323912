from typing import Any, Callable, Dict

OPERATORS: Dict[str, Callable[[str, str], bool]] = {
    "equals": lambda left, right: left == right,
    "not_equals": lambda left, right: left != right,
    "contains": lambda left, right: right in left,
    "starts_with": lambda left, right: left.startswith(right),
}


def evaluate_condition(field_value: Any, operator: str, compare_value: Any) -> bool:
    """Case-insensitive comparison used by condition nodes.

    Ex:
        evaluate_condition("Acme Corp", "contains", "acme") -> True

    Operator names must match exactly; anything else evaluates to False.
    """
    op = OPERATORS.get(operator)
    if op is None:
        return False
    left = str(field_value or "").lower()
    right = str(compare_value or "").lower()
    return op(left, right)
