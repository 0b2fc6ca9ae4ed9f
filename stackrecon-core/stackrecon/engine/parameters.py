import logging
import re
from typing import Any, Optional

from stackrecon.constants import DEFAULT_PARTITION, DEFAULT_URL_SUFFIX
from stackrecon.engine.entities import Parameter
from stackrecon.engine.errors import InvalidParameterError
from stackrecon.engine.types import ParameterDefinition

LOG = logging.getLogger(__name__)

LIST_TYPES = ("CommaDelimitedList", "List<Number>")

# value of Ref AWS::NoValue, removes the surrounding property or list item
NO_VALUE = object()


def resolve_parameters(
    definitions: dict[str, ParameterDefinition], overrides: Optional[dict[str, Any]] = None
) -> dict[str, Parameter]:
    """
    Validate the user supplied parameter values against their declaration and return the resolved parameters.

    String and Number values are kept as strings (a ``Ref`` to a Number parameter yields a string),
    list types are resolved to a list of strings.
    """
    overrides = dict(overrides or {})
    unknown = sorted(set(overrides) - set(definitions))
    if unknown:
        raise InvalidParameterError(
            f"Parameters: {unknown} do not exist in the template", parameter_name=unknown[0]
        )

    result = {}
    for name, definition in definitions.items():
        param_type = definition.get("Type", "String")
        if name in overrides and overrides[name] is not None:
            raw_value = overrides[name]
        elif "Default" in definition:
            raw_value = definition["Default"]
        else:
            raise InvalidParameterError(
                f"Parameter {name} must have a value", parameter_name=name
            )

        value = _convert(name, param_type, raw_value)
        _validate(name, param_type, definition, value)
        result[name] = Parameter(
            name=name,
            type=param_type,
            value=value,
            no_echo=str(definition.get("NoEcho", "false")).lower() == "true",
        )
        LOG.debug("Resolved parameter %s = %s", name, result[name].display_value)

    return result


def _convert(name: str, param_type: str, raw_value: Any) -> Any:
    if param_type in LIST_TYPES or param_type.startswith("List<"):
        if isinstance(raw_value, (list, tuple)):
            items = [str(item).strip() for item in raw_value]
        else:
            items = [item.strip() for item in str(raw_value).split(",")]
        if param_type == "List<Number>":
            for item in items:
                _require_number(name, item)
        return items

    if isinstance(raw_value, bool):
        raw_value = str(raw_value).lower()
    value = str(raw_value)
    if param_type == "Number":
        _require_number(name, value)
    return value


def _require_number(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise InvalidParameterError(
            f"Parameter {name} must be a number, got '{value}'", parameter_name=name
        )


def _validate(name: str, param_type: str, definition: ParameterDefinition, value: Any):
    values = value if isinstance(value, list) else [value]
    constraint = definition.get("ConstraintDescription")

    def fail(reason: str):
        message = f"Parameter '{name}' {reason}"
        if constraint:
            message = f"{message}: {constraint}"
        raise InvalidParameterError(message, parameter_name=name)

    allowed = definition.get("AllowedValues")
    if allowed is not None:
        allowed = [str(v).lower() if isinstance(v, bool) else str(v) for v in allowed]
        for item in values:
            if item not in allowed:
                fail(f"must be one of AllowedValues {allowed}, got '{item}'")

    for item in values:
        if pattern := definition.get("AllowedPattern"):
            if not re.fullmatch(pattern, item):
                fail(f"must match pattern {pattern}")
        if "MinLength" in definition and len(item) < int(definition["MinLength"]):
            fail(f"must contain at least {definition['MinLength']} characters")
        if "MaxLength" in definition and len(item) > int(definition["MaxLength"]):
            fail(f"must contain at most {definition['MaxLength']} characters")
        if param_type in ("Number", "List<Number>"):
            number = float(item)
            if "MinValue" in definition and number < float(definition["MinValue"]):
                fail(f"must be a number not less than {definition['MinValue']}")
            if "MaxValue" in definition and number > float(definition["MaxValue"]):
                fail(f"must be a number not greater than {definition['MaxValue']}")


PSEUDO_PARAMETERS = (
    "AWS::Region",
    "AWS::AccountId",
    "AWS::StackName",
    "AWS::StackId",
    "AWS::Partition",
    "AWS::URLSuffix",
    "AWS::NoValue",
    "AWS::NotificationARNs",
)


def get_pseudo_parameters(
    stack_name: str, stack_id: str, region: str, account_id: str
) -> dict[str, Any]:
    return {
        "AWS::Region": region,
        "AWS::AccountId": account_id,
        "AWS::StackName": stack_name,
        "AWS::StackId": stack_id,
        "AWS::Partition": DEFAULT_PARTITION,
        "AWS::URLSuffix": DEFAULT_URL_SUFFIX,
        "AWS::NoValue": NO_VALUE,
        "AWS::NotificationARNs": [],
    }
