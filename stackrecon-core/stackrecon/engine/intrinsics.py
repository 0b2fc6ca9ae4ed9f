"""
Evaluation of intrinsic functions (``Ref``, ``Fn::GetAtt``, ``Fn::Sub``, ...) in resource properties and outputs.

Values are resolved in two phases:

* at plan time (``resolve_static``), everything that only depends on parameters, pseudo parameters,
  mappings and conditions is evaluated. Functions that reference another resource stay in place, with
  their arguments resolved as far as possible.
* at apply time (``resolve``), the remaining references are looked up in the attribute table of the
  resources that were already deployed.
"""

import base64
import logging
import re
from typing import Any, Callable, Mapping, Optional

from stackrecon.engine.errors import InvalidTemplateError
from stackrecon.engine.mappings import find_in_map
from stackrecon.engine.parameters import NO_VALUE

LOG = logging.getLogger(__name__)

SUPPORTED_FUNCTIONS = (
    "Ref",
    "Fn::GetAtt",
    "Fn::Sub",
    "Fn::Join",
    "Fn::Select",
    "Fn::Split",
    "Fn::GetAZs",
    "Fn::Base64",
    "Fn::If",
    "Fn::FindInMap",
)

# the zones that Fn::GetAZs returns for every region
AVAILABILITY_ZONE_SUFFIXES = ("a", "b", "c")

SUB_VARIABLE_REGEX = re.compile(r"\$\{([^!}][^}]*)\}")

# (logical id, attribute or None for Ref) -> value
ResourceLookup = Callable[[str, Optional[str]], Any]


class DeferredReference(Exception):
    """Raised at plan time when a value depends on a resource that is not deployed yet"""

    def __init__(self, logical_id: str):
        self.logical_id = logical_id


def is_intrinsic(value: Any) -> bool:
    if not isinstance(value, dict) or len(value) != 1:
        return False
    key = next(iter(value))
    return key == "Ref" or key.startswith("Fn::")


def contains_intrinsic(value: Any) -> bool:
    if is_intrinsic(value):
        return True
    if isinstance(value, dict):
        return any(contains_intrinsic(v) for v in value.values())
    if isinstance(value, list):
        return any(contains_intrinsic(v) for v in value)
    return False


def parse_get_att(args: Any) -> tuple[str, str]:
    if isinstance(args, str):
        args = args.split(".", 1)
    if not isinstance(args, list) or len(args) != 2:
        raise InvalidTemplateError(f"Invalid arguments for Fn::GetAtt: {args}", operation="resolve")
    return args[0], args[1]


def sub_variables(template: str) -> list[str]:
    """Names referenced by ``${...}`` placeholders in a Fn::Sub string, escaped ``${!...}`` excluded"""
    return [match.strip() for match in SUB_VARIABLE_REGEX.findall(template)]


class IntrinsicResolver:
    def __init__(
        self,
        parameters: Mapping[str, Any],
        pseudo_parameters: Mapping[str, Any],
        mappings: Mapping,
        conditions: Mapping[str, bool],
        resource_names: set[str],
        region: str,
        resource_lookup: Optional[ResourceLookup] = None,
    ):
        self.parameters = parameters
        self.pseudo_parameters = pseudo_parameters
        self.mappings = mappings
        self.conditions = conditions
        self.resource_names = resource_names
        self.region = region
        self.resource_lookup = resource_lookup
        self._logical_id = None
        self._partial = False

    def resolve(self, value: Any, logical_resource_id: Optional[str] = None) -> Any:
        """Fully resolve the given value, resource references are looked up with ``resource_lookup``"""
        self._logical_id = logical_resource_id
        self._partial = False
        return self._finalize(self._resolve(value))

    def resolve_static(self, value: Any, logical_resource_id: Optional[str] = None) -> Any:
        """Resolve everything that does not depend on a resource, keep resource references in place"""
        self._logical_id = logical_resource_id
        self._partial = True
        return self._finalize(self._resolve(value))

    @staticmethod
    def _finalize(value: Any) -> Any:
        return None if value is NO_VALUE else value

    def _error(self, message: str) -> InvalidTemplateError:
        return InvalidTemplateError(
            message, logical_resource_id=self._logical_id, operation="resolve"
        )

    def _resolve(self, value: Any) -> Any:
        if isinstance(value, dict):
            if is_intrinsic(value):
                return self._resolve_function(*next(iter(value.items())))
            result = {}
            for key, item in value.items():
                resolved = self._resolve(item)
                if resolved is not NO_VALUE:
                    result[key] = resolved
            return result
        if isinstance(value, list):
            return [item for item in map(self._resolve, value) if item is not NO_VALUE]
        return value

    def _resolve_function(self, name: str, args: Any) -> Any:
        handler = getattr(self, f"_fn_{name.removeprefix('Fn::').lower()}", None)
        if name not in SUPPORTED_FUNCTIONS or handler is None:
            raise self._error(f"Unsupported intrinsic function {name}")
        try:
            return handler(args)
        except DeferredReference:
            if not self._partial:
                raise
            return {name: self._resolve(args)}

    def _resolve_arg(self, arg: Any) -> Any:
        """Resolve a function argument, which must not contain a deferred reference at plan time"""
        resolved = self._resolve(arg)
        if self._partial and contains_intrinsic(resolved):
            raise DeferredReference(self._logical_id)
        return resolved

    def _lookup_resource(self, logical_id: str, attribute: Optional[str]) -> Any:
        if logical_id not in self.resource_names:
            raise self._error(f"Unresolved resource dependency {logical_id}")
        if self._partial or self.resource_lookup is None:
            raise DeferredReference(logical_id)
        return self.resource_lookup(logical_id, attribute)

    def _fn_ref(self, args: Any) -> Any:
        if not isinstance(args, str):
            raise self._error(f"Invalid argument for Ref: {args}")
        if args in self.parameters:
            return self.parameters[args]
        if args in self.pseudo_parameters:
            return self.pseudo_parameters[args]
        return self._lookup_resource(args, None)

    def _fn_getatt(self, args: Any) -> Any:
        logical_id, attribute = parse_get_att(args)
        if not isinstance(attribute, str):
            attribute = self._resolve_arg(attribute)
        return self._lookup_resource(logical_id, attribute)

    def _fn_sub(self, args: Any) -> str:
        if isinstance(args, str):
            template, variables = args, {}
        elif isinstance(args, list) and len(args) == 2 and isinstance(args[0], str):
            template, variables = args[0], self._resolve_arg(args[1])
        else:
            raise self._error(f"Invalid arguments for Fn::Sub: {args}")

        def replace(match: re.Match) -> str:
            name = match.group(1).strip()
            if name in variables:
                value = variables[name]
            elif "." in name and name.split(".", 1)[0] in self.resource_names:
                value = self._fn_getatt(name)
            else:
                value = self._fn_ref(name)
            if isinstance(value, list):
                raise self._error(f"Variable {name} in Fn::Sub must resolve to a string")
            return str(value)

        result = SUB_VARIABLE_REGEX.sub(replace, template)
        return result.replace("${!", "${")

    def _fn_join(self, args: Any) -> str:
        if not isinstance(args, list) or len(args) != 2:
            raise self._error(f"Invalid arguments for Fn::Join: {args}")
        delimiter = self._resolve_arg(args[0])
        values = self._resolve_arg(args[1])
        if not isinstance(values, list):
            raise self._error(f"Fn::Join expects a list of values, got {values}")
        return str(delimiter).join("" if v is None else _to_string(v) for v in values)

    def _fn_select(self, args: Any) -> Any:
        if not isinstance(args, list) or len(args) != 2:
            raise self._error(f"Invalid arguments for Fn::Select: {args}")
        index = self._resolve_arg(args[0])
        values = self._resolve_arg(args[1])
        try:
            index = int(index)
        except (TypeError, ValueError):
            raise self._error(f"Fn::Select index must be a number, got {index}")
        if not isinstance(values, list) or not 0 <= index < len(values):
            raise self._error(f"Fn::Select index {index} out of range for {values}")
        return values[index]

    def _fn_split(self, args: Any) -> list:
        if not isinstance(args, list) or len(args) != 2:
            raise self._error(f"Invalid arguments for Fn::Split: {args}")
        delimiter = self._resolve_arg(args[0])
        source = self._resolve_arg(args[1])
        return str(source).split(str(delimiter))

    def _fn_getazs(self, args: Any) -> list[str]:
        region = self._resolve_arg(args) or self.region
        return [f"{region}{suffix}" for suffix in AVAILABILITY_ZONE_SUFFIXES]

    def _fn_base64(self, args: Any) -> str:
        value = self._resolve_arg(args)
        return base64.b64encode(str(value).encode("utf-8")).decode("utf-8")

    def _fn_if(self, args: Any) -> Any:
        if not isinstance(args, list) or len(args) != 3:
            raise self._error(f"Invalid arguments for Fn::If: {args}")
        condition_name = args[0]
        if condition_name not in self.conditions:
            raise self._error(f"Condition {condition_name} is not defined")
        branch = args[1] if self.conditions[condition_name] else args[2]
        return self._resolve(branch)

    def _fn_findinmap(self, args: Any) -> Any:
        if not isinstance(args, list) or len(args) != 3:
            raise self._error(f"Invalid arguments for Fn::FindInMap: {args}")
        mapping_name, top_level_key, second_level_key = (self._resolve_arg(a) for a in args)
        return find_in_map(
            self.mappings, mapping_name, top_level_key, second_level_key, self._logical_id
        )


def _to_string(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)
