import logging
from typing import Any, Iterable

from stackrecon.engine.entities import Stack
from stackrecon.engine.errors import CycleDetectedError, InvalidTemplateError
from stackrecon.engine.intrinsics import parse_get_att, sub_variables
from stackrecon.engine.parameters import PSEUDO_PARAMETERS

LOG = logging.getLogger(__name__)


def collect_references(value: Any, non_resource_names: set[str]) -> set[str]:
    """
    Collect the logical ids referenced by ``Ref``, ``Fn::GetAtt`` and ``${Name}`` / ``${Name.Attr}``
    placeholders of ``Fn::Sub`` anywhere in the given value.

    :param non_resource_names: parameter and pseudo parameter names, which are no resource references
    """
    references = set()

    def _collect(item: Any):
        if isinstance(item, list):
            for element in item:
                _collect(element)
            return
        if not isinstance(item, dict):
            return

        for key, args in item.items():
            if key == "Ref" and isinstance(args, str):
                if args not in non_resource_names:
                    references.add(args)
            elif key == "Fn::GetAtt":
                references.add(parse_get_att(args)[0])
            elif key == "Fn::Sub":
                template, variables = (args, {}) if isinstance(args, str) else (args[0], args[1])
                _collect(variables)
                for name in sub_variables(template):
                    name = name.split(".", 1)[0] if "." in name else name
                    if name not in non_resource_names and name not in variables:
                        references.add(name)
            else:
                _collect(args)

    _collect(value)
    return references


def build_dependency_graph(stack: Stack) -> dict[str, set[str]]:
    """
    Build the graph of the realized resources: an edge from every resource to each resource it references
    or explicitly depends on. References to excluded or undeclared resources fail with an
    ``InvalidTemplateError``, a cyclic graph with a ``CycleDetectedError``.
    """
    non_resource_names = set(stack.parameters) | set(PSEUDO_PARAMETERS)
    graph = {}
    for logical_id, resource in stack.resources.items():
        references = collect_references(resource.properties, non_resource_names)
        references.update(resource.depends_on)
        unresolved = sorted(ref for ref in references if ref not in stack.resources)
        if unresolved:
            raise InvalidTemplateError(
                f"Unresolved resource dependencies {unresolved} in the Resources block of the template",
                logical_resource_id=logical_id,
                operation="build_graph",
            )
        graph[logical_id] = references

    cycles = find_cycles(graph)
    if cycles:
        raise CycleDetectedError(sorted({name for cycle in cycles for name in cycle}))

    LOG.debug("Built dependency graph for stack %s: %s", stack.stack_name, graph)
    return graph


def find_cycles(graph: dict[str, Iterable[str]]) -> list[list[str]]:
    """Return the strongly connected components that form a cycle (more than one node, or a self reference)"""
    index_counter = [0]
    indices: dict[str, int] = {}
    lowlinks: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    cycles = []

    def strongconnect(node: str):
        # iterative Tarjan, deep templates must not hit the recursion limit
        work = [(node, iter(sorted(graph.get(node, ()))))]
        indices[node] = lowlinks[node] = index_counter[0]
        index_counter[0] += 1
        stack.append(node)
        on_stack.add(node)

        while work:
            current, neighbours = work[-1]
            advanced = False
            for neighbour in neighbours:
                if neighbour not in graph:
                    continue
                if neighbour not in indices:
                    indices[neighbour] = lowlinks[neighbour] = index_counter[0]
                    index_counter[0] += 1
                    stack.append(neighbour)
                    on_stack.add(neighbour)
                    work.append((neighbour, iter(sorted(graph.get(neighbour, ())))))
                    advanced = True
                    break
                if neighbour in on_stack:
                    lowlinks[current] = min(lowlinks[current], indices[neighbour])
            if advanced:
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlinks[parent] = min(lowlinks[parent], lowlinks[current])

            if lowlinks[current] == indices[current]:
                component = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == current:
                        break
                if len(component) > 1 or current in graph.get(current, ()):
                    cycles.append(sorted(component))

    for node in graph:
        if node not in indices:
            strongconnect(node)

    return cycles
