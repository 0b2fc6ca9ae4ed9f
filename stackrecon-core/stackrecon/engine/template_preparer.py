import logging
from typing import Any, Callable, Optional

from stackrecon import config
from stackrecon.engine.conditions import ConditionEvaluator, evaluate_resource_condition
from stackrecon.engine.dependencies import build_dependency_graph, collect_references
from stackrecon.engine.entities import Output, Resource, Stack
from stackrecon.engine.errors import InvalidTemplateError, StackError
from stackrecon.engine.intrinsics import IntrinsicResolver, ResourceLookup
from stackrecon.engine.mappings import freeze_mappings
from stackrecon.engine.parameters import (
    PSEUDO_PARAMETERS,
    get_pseudo_parameters,
    resolve_parameters,
)
from stackrecon.engine.template_parser import validate_template_structure
from stackrecon.engine.types import RawTemplate

LOG = logging.getLogger(__name__)

# snapshots are not supported, a Snapshot policy deletes the resource
DELETION_POLICIES = ("Delete", "Retain", "Snapshot")


def create_resolver(
    stack: Stack,
    resource_lookup: Optional[ResourceLookup] = None,
    resource_names: Optional[set[str]] = None,
) -> IntrinsicResolver:
    if resource_names is None:
        resource_names = set(stack.resources)
    return IntrinsicResolver(
        parameters=stack.parameter_values,
        pseudo_parameters=get_pseudo_parameters(
            stack.stack_name, stack.stack_id, stack.region, stack.account_id
        ),
        mappings=stack.mappings,
        conditions=stack.conditions,
        resource_names=resource_names,
        region=stack.region,
        resource_lookup=resource_lookup,
    )


def prepare_stack(
    template: RawTemplate,
    stack_name: str,
    stack_id: str,
    parameters: Optional[dict[str, Any]] = None,
    region: Optional[str] = None,
    account_id: Optional[str] = None,
    is_supported_type: Optional[Callable[[str], bool]] = None,
) -> Stack:
    """
    Run all pre-flight steps for the given template: validate the parameters, evaluate the conditions,
    realize the resources and outputs that are not gated off (with parameters, mappings and conditions
    resolved) and build the dependency graph. No provider is called here.

    :raises PreflightError: if the template cannot be deployed
    """
    validate_template_structure(template)

    stack = Stack(
        stack_name=stack_name,
        stack_id=stack_id,
        template=template,
        region=region or config.DEFAULT_REGION,
        account_id=account_id or config.ACCOUNT_ID,
    )
    stack.parameters = resolve_parameters(template.get("Parameters") or {}, parameters)
    stack.mappings = freeze_mappings(template.get("Mappings"))

    declared = template["Resources"]
    # conditions cannot reference resources, and Fn::If is not allowed inside conditions
    condition_resolver = create_resolver(stack, resource_names=set())
    stack.conditions = ConditionEvaluator(
        template.get("Conditions") or {}, condition_resolver.resolve
    ).evaluate_all()

    static_resolver = create_resolver(stack, resource_names=set(declared))
    for index, (logical_id, definition) in enumerate(declared.items()):
        resource_type = definition["Type"]
        if not evaluate_resource_condition(stack.conditions, definition):
            LOG.debug("Excluding resource %s, condition %s is false", logical_id, definition["Condition"])
            stack.excluded_resources.add(logical_id)
            continue

        if is_supported_type and not is_supported_type(resource_type):
            if not config.IGNORE_UNSUPPORTED_RESOURCE_TYPES:
                raise InvalidTemplateError(
                    f"Unsupported resource type {resource_type}",
                    logical_resource_id=logical_id,
                    operation="validate",
                )
            LOG.warning("Skipping resource %s of unsupported type %s", logical_id, resource_type)
            stack.excluded_resources.add(logical_id)
            continue

        properties = definition.get("Properties") or {}
        if not isinstance(properties, dict):
            raise InvalidTemplateError(
                "Properties must be an object", logical_resource_id=logical_id, operation="validate"
            )

        deletion_policy = definition.get("DeletionPolicy") or "Delete"
        if deletion_policy not in DELETION_POLICIES:
            raise InvalidTemplateError(
                f"Unsupported DeletionPolicy {deletion_policy}",
                logical_resource_id=logical_id,
                operation="validate",
            )

        stack.resources[logical_id] = Resource(
            logical_id=logical_id,
            type=resource_type,
            properties=static_resolver.resolve_static(properties, logical_id) or {},
            depends_on=_normalize_depends_on(logical_id, definition.get("DependsOn")),
            condition=definition.get("Condition"),
            index=index,
            deletion_policy=deletion_policy,
        )

    stack.dependencies = build_dependency_graph(stack)
    stack.outputs = _prepare_outputs(stack, static_resolver)

    LOG.debug(
        "Prepared stack %s: %d resources realized, %d excluded",
        stack_name,
        len(stack.resources),
        len(stack.excluded_resources),
    )
    return stack


def _normalize_depends_on(logical_id: str, depends_on: Any) -> list[str]:
    if depends_on is None:
        return []
    if isinstance(depends_on, str):
        return [depends_on]
    if isinstance(depends_on, list) and all(isinstance(d, str) for d in depends_on):
        return list(depends_on)
    raise InvalidTemplateError(
        f"DependsOn must be a string or a list of strings, got {depends_on}",
        logical_resource_id=logical_id,
        operation="validate",
    )


def _prepare_outputs(stack: Stack, resolver: IntrinsicResolver) -> dict[str, Output]:
    outputs = {}
    non_resource_names = set(stack.parameters) | set(PSEUDO_PARAMETERS)
    for name, definition in (stack.template.get("Outputs") or {}).items():
        if not isinstance(definition, dict) or "Value" not in definition:
            raise InvalidTemplateError(f"Output {name} must declare a Value", operation="validate")
        try:
            if not evaluate_resource_condition(stack.conditions, definition):
                continue
            value = resolver.resolve_static(definition["Value"])
            export = definition.get("Export") or {}
            export_name = resolver.resolve_static(export.get("Name")) if export else None
        except StackError as e:
            e.logical_resource_id = e.logical_resource_id or name
            raise

        references = collect_references([value, export_name], non_resource_names)
        if references & stack.excluded_resources:
            LOG.debug("Dropping output %s, it references excluded resources", name)
            continue
        if unresolved := sorted(references - set(stack.resources)):
            raise InvalidTemplateError(
                f"Unresolved resource dependencies {unresolved} in the Outputs block of the template",
                logical_resource_id=name,
                operation="validate",
            )

        outputs[name] = Output(
            name=name,
            value=value,
            description=definition.get("Description"),
            condition=definition.get("Condition"),
            export_name=export_name,
        )
    return outputs
