import logging
from typing import Any, Callable

from stackrecon.engine.errors import ConditionCycleError, InvalidTemplateError

LOG = logging.getLogger(__name__)

CONDITION_FUNCTIONS = ("Fn::And", "Fn::Or", "Fn::Not", "Fn::Equals", "Condition")


class ConditionEvaluator:
    """
    Evaluates the named conditions of a template. Conditions that reference other conditions are
    evaluated lazily, a reference cycle raises a ``ConditionCycleError``.

    :param definitions: the ``Conditions`` section of the template
    :param resolve_value: resolves the operands of ``Fn::Equals`` (e.g. ``Ref`` to a parameter)
    """

    def __init__(self, definitions: dict[str, Any], resolve_value: Callable[[Any], Any]):
        self.definitions = definitions or {}
        self.resolve_value = resolve_value
        self._results: dict[str, bool] = {}
        self._visiting: list[str] = []

    def evaluate_all(self) -> dict[str, bool]:
        for name in self.definitions:
            self.evaluate(name)
        return dict(self._results)

    def evaluate(self, name: str) -> bool:
        if name in self._results:
            return self._results[name]
        if name not in self.definitions:
            raise InvalidTemplateError(f"Condition {name} is not defined", operation="evaluate_conditions")
        if name in self._visiting:
            cycle = self._visiting[self._visiting.index(name) :] + [name]
            raise ConditionCycleError(cycle)

        self._visiting.append(name)
        try:
            result = self._evaluate_expression(self.definitions[name])
        finally:
            self._visiting.pop()

        LOG.debug("Condition %s evaluated to %s", name, result)
        self._results[name] = result
        return result

    def _evaluate_expression(self, expression: Any) -> bool:
        if isinstance(expression, bool):
            return expression
        if isinstance(expression, str) and expression.lower() in ("true", "false"):
            return expression.lower() == "true"
        if not isinstance(expression, dict) or len(expression) != 1:
            raise InvalidTemplateError(
                f"Invalid condition expression: {expression}", operation="evaluate_conditions"
            )

        function, args = next(iter(expression.items()))
        match function:
            case "Condition":
                return self.evaluate(args)
            case "Fn::Not":
                operand = args[0] if isinstance(args, list) else args
                return not self._evaluate_expression(operand)
            case "Fn::And":
                return all([self._evaluate_expression(arg) for arg in args])
            case "Fn::Or":
                return any([self._evaluate_expression(arg) for arg in args])
            case "Fn::Equals":
                if not isinstance(args, list) or len(args) != 2:
                    raise InvalidTemplateError(
                        f"Fn::Equals expects two operands, got {args}", operation="evaluate_conditions"
                    )
                left, right = (normalize_operand(self.resolve_value(arg)) for arg in args)
                return left == right
            case _:
                raise InvalidTemplateError(
                    f"Unsupported function {function} in condition", operation="evaluate_conditions"
                )


def normalize_operand(value: Any) -> Any:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        return [normalize_operand(v) for v in value]
    return value


def evaluate_resource_condition(conditions: dict[str, bool], resource: dict) -> bool:
    if condition := resource.get("Condition"):
        if condition not in conditions:
            raise InvalidTemplateError(f"Condition {condition} is not defined", operation="evaluate_conditions")
        return conditions[condition]
    return True
