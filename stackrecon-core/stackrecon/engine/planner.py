import heapq
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from stackrecon.engine.dependencies import collect_references, find_cycles
from stackrecon.engine.entities import Stack
from stackrecon.engine.errors import CycleDetectedError
from stackrecon.engine.parameters import PSEUDO_PARAMETERS

LOG = logging.getLogger(__name__)


class ChangeAction(str, Enum):
    ADD = "Add"
    MODIFY = "Modify"
    REMOVE = "Remove"
    NONE = "None"


class ReplacementStrategy(str, Enum):
    CREATE_BEFORE_DESTROY = "CREATE_BEFORE_DESTROY"
    DESTROY_BEFORE_CREATE = "DESTROY_BEFORE_CREATE"


@dataclass
class ResourceChange:
    logical_resource_id: str
    resource_type: str
    action: ChangeAction
    replacement: bool = False
    strategy: Optional[ReplacementStrategy] = None
    changed_properties: list[str] = field(default_factory=list)
    physical_resource_id: Optional[str] = None
    # declared properties are unchanged, but reference a resource that is updated in place, so the
    # resolved properties are only known during the deployment
    recheck: bool = False

    def serialize(self) -> dict:
        return {
            "LogicalResourceId": self.logical_resource_id,
            "ResourceType": self.resource_type,
            "Action": self.action.value,
            "Replacement": self.replacement,
            "ReplacementStrategy": self.strategy.value if self.strategy else None,
            "ChangedProperties": list(self.changed_properties),
            "PhysicalResourceId": self.physical_resource_id,
            "Evaluation": "Dynamic" if self.recheck else "Static",
        }


@dataclass
class ChangeSet:
    stack_name: str
    changes: dict[str, ResourceChange]
    # realized resources in dependency order, unchanged resources included
    creation_order: list[str]
    # removed resources and originals of create-before-destroy replacements, dependents first
    removal_order: list[str]

    @property
    def has_changes(self) -> bool:
        return any(change.action != ChangeAction.NONE for change in self.changes.values())

    def serialize(self) -> list[dict]:
        ordered = self.creation_order + [
            name for name in self.removal_order if name not in self.creation_order
        ]
        return [self.changes[name].serialize() for name in ordered if name in self.changes]


def topological_sort(graph: dict[str, set[str]], declaration_order: list[str]) -> list[str]:
    """
    Order the nodes of the graph so that every node comes after all nodes it depends on (Kahn's
    algorithm). Ties are broken by declaration order.

    :param graph: node -> nodes it depends on, edges to unknown nodes are ignored
    """
    position = {name: index for index, name in enumerate(declaration_order)}
    fallback = len(position)
    in_degree = {node: 0 for node in graph}
    dependents = defaultdict(list)
    for node, dependencies in graph.items():
        for dependency in dependencies:
            if dependency in graph:
                in_degree[node] += 1
                dependents[dependency].append(node)

    ready = [(position.get(node, fallback), node) for node, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)
    order = []
    while ready:
        _, node = heapq.heappop(ready)
        order.append(node)
        for dependent in dependents[node]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, (position.get(dependent, fallback), dependent))

    if len(order) < len(graph):
        remaining = {node: deps for node, deps in graph.items() if node not in order}
        cycles = find_cycles(remaining)
        raise CycleDetectedError(sorted({n for cycle in cycles for n in cycle}) or sorted(remaining))

    return order


def deletion_order(graph: dict[str, set[str]], declaration_order: list[str]) -> list[str]:
    """The exact reverse of the creation order: dependents are deleted before their dependencies"""
    return list(reversed(topological_sort(graph, declaration_order)))


def previous_dependency_graph(previous_resources: dict[str, dict]) -> dict[str, set[str]]:
    return {
        logical_id: set(record.get("Dependencies") or [])
        for logical_id, record in previous_resources.items()
    }


def create_only_properties(schema: dict) -> set[str]:
    """Top level property names of the ``createOnlyProperties`` json pointers of a provider schema"""
    names = set()
    for pointer in schema.get("createOnlyProperties", []):
        parts = [part for part in pointer.split("/") if part and part != "properties"]
        if parts:
            names.add(parts[0])
    return names


def diff_properties(old: dict[str, Any], new: dict[str, Any]) -> list[str]:
    return sorted(key for key in set(old) | set(new) if old.get(key) != new.get(key))


def choose_strategy(
    logical_id: str, stack: Stack, previous_resources: dict[str, dict]
) -> ReplacementStrategy:
    """
    A replaced resource is created before its original is destroyed whenever something depends on it,
    either in the new template or among the previous resources. The latter are removed in the cleanup
    phase, so the original must outlive them.
    """
    if stack.dependents_of(logical_id):
        return ReplacementStrategy.CREATE_BEFORE_DESTROY
    for name, record in previous_resources.items():
        if name != logical_id and logical_id in (record.get("Dependencies") or []):
            return ReplacementStrategy.CREATE_BEFORE_DESTROY
    return ReplacementStrategy.DESTROY_BEFORE_CREATE


def compute_removal_order(
    changes: dict[str, ResourceChange], previous_resources: dict[str, dict]
) -> list[str]:
    """Removed resources and originals of create-before-destroy replacements, dependents first"""
    cleanup = {
        name
        for name, change in changes.items()
        if change.action == ChangeAction.REMOVE
        or change.strategy == ReplacementStrategy.CREATE_BEFORE_DESTROY
    }
    previous_order = deletion_order(
        previous_dependency_graph(previous_resources), list(previous_resources)
    )
    return [name for name in previous_order if name in cleanup]


def create_change_set(
    stack: Stack,
    previous_resources: Optional[dict[str, dict]],
    get_schema: Callable[[str], dict],
) -> ChangeSet:
    """
    Compare the realized resources of the stack with the persisted resources of the previous run and
    classify every resource as added, modified (in place or replaced), removed or unchanged.

    A replacement propagates to dependents: a property that references a replaced resource is considered
    changed, which in turn may replace the dependent. An unchanged resource that references a resource
    updated in place is marked for ``recheck``, its properties are compared again once the referenced
    attributes are known.
    """
    previous_resources = previous_resources or {}
    creation_order = topological_sort(stack.dependencies, stack.declaration_order)
    non_resource_names = set(stack.parameters) | set(PSEUDO_PARAMETERS)

    changes: dict[str, ResourceChange] = {}
    replaced: set[str] = set()
    # updated in place, or possibly so once resolved
    updated: set[str] = set()
    for logical_id in creation_order:
        resource = stack.resources[logical_id]
        previous = previous_resources.get(logical_id)
        if previous is None:
            changes[logical_id] = ResourceChange(logical_id, resource.type, ChangeAction.ADD)
            continue

        physical_id = previous.get("PhysicalResourceId")
        references = set()
        if previous.get("Type") != resource.type:
            changed, replacement = ["Type"], True
        else:
            old_properties = previous.get("DeclaredProperties") or {}
            changed = set(diff_properties(old_properties, resource.properties))
            for key, value in resource.properties.items():
                referenced = collect_references(value, non_resource_names)
                references |= referenced
                if referenced & replaced:
                    changed.add(key)
            changed = sorted(changed)
            replacement = bool(set(changed) & create_only_properties(get_schema(resource.type)))

        if not changed:
            changes[logical_id] = ResourceChange(
                logical_id,
                resource.type,
                ChangeAction.NONE,
                physical_resource_id=physical_id,
                recheck=bool(references & updated),
            )
            if changes[logical_id].recheck:
                updated.add(logical_id)
            continue

        strategy = None
        if replacement:
            replaced.add(logical_id)
            strategy = choose_strategy(logical_id, stack, previous_resources)
        else:
            updated.add(logical_id)
        changes[logical_id] = ResourceChange(
            logical_id,
            resource.type,
            ChangeAction.MODIFY,
            replacement=replacement,
            strategy=strategy,
            changed_properties=changed,
            physical_resource_id=physical_id,
            recheck=not replacement and bool(references & updated),
        )

    removed = [name for name in previous_resources if name not in stack.resources]
    for logical_id in removed:
        record = previous_resources[logical_id]
        changes[logical_id] = ResourceChange(
            logical_id,
            record.get("Type"),
            ChangeAction.REMOVE,
            physical_resource_id=record.get("PhysicalResourceId"),
        )

    change_set = ChangeSet(
        stack_name=stack.stack_name,
        changes=changes,
        creation_order=creation_order,
        removal_order=compute_removal_order(changes, previous_resources),
    )
    LOG.debug(
        "Change set for stack %s: %s",
        stack.stack_name,
        {name: change.action.value for name, change in changes.items()},
    )
    return change_set
