import logging
import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from stackrecon import config
from stackrecon.engine.entities import (
    Resource,
    ResourceGate,
    ResourceStatus,
    Stack,
    StackEvent,
    StackStatus,
)
from stackrecon.engine.errors import (
    InvalidTemplateError,
    ProviderFatalError,
    RollbackFailedError,
    StackError,
)
from stackrecon.engine.outputs import resolve_outputs
from stackrecon.engine.planner import (
    ChangeAction,
    ChangeSet,
    ReplacementStrategy,
    ResourceChange,
    choose_strategy,
    compute_removal_order,
    create_only_properties,
    deletion_order,
    diff_properties,
    previous_dependency_graph,
)
from stackrecon.engine.template_preparer import create_resolver
from stackrecon.resource_provider import (
    ProgressEvent,
    ResourceProviderExecutor,
    ResourceRequest,
    extract_physical_resource_id,
)
from stackrecon.stores import StackState
from stackrecon.utils.strings import short_uid

LOG = logging.getLogger(__name__)

STACK_RESOURCE_TYPE = "AWS::CloudFormation::Stack"
RETAIN = "Retain"

# interval (in seconds) in which the scheduler checks for a cancellation while operations are running
SCHEDULER_TICK = 0.1

EventCallback = Callable[[StackEvent], None]
Task = Callable[[], "OperationResult"]


@dataclass
class JournalEntry:
    """A completed mutation of the apply phase, undone in reverse order during rollback"""

    action: str  # "created", "updated" or "destroyed"
    logical_resource_id: str
    resource_type: str
    physical_resource_id: Optional[str]
    # the record of the resource before the mutation, None if the resource did not exist
    previous_record: Optional[dict] = None
    properties: dict = field(default_factory=dict)


@dataclass
class OperationResult:
    record: Optional[dict] = None
    journal: list[JournalEntry] = field(default_factory=list)
    error: Optional[StackError] = None


@dataclass
class DeployOutcome:
    status: StackStatus
    error: Optional[StackError] = None
    outputs: dict[str, Any] = field(default_factory=dict)
    exports: dict[str, Any] = field(default_factory=dict)


def lookup_attribute(record: dict, attribute: str) -> Any:
    attributes = record.get("Attributes") or {}
    if attribute in attributes:
        return attributes[attribute]
    value = attributes
    for part in attribute.split("."):
        if not isinstance(value, dict) or part not in value:
            raise KeyError(attribute)
        value = value[part]
    return value


def guarded(logical_id: str, operation: str, task: Task) -> Task:
    """Turn unexpected exceptions of a worker task into a fatal error of the resource"""

    def _run() -> OperationResult:
        try:
            return task()
        except Exception as e:
            LOG.exception("Unexpected error during %s of resource %s", operation, logical_id)
            error = ProviderFatalError(
                f"{type(e).__name__}: {e}", logical_resource_id=logical_id, operation=operation
            )
            return OperationResult(error=error)

    return _run


class GraphScheduler:
    """
    Runs one task per node of a DAG on a bounded worker pool. A node is started once all of its
    prerequisites completed, so independent branches proceed in parallel. ``prepare`` and
    ``complete`` run on the calling thread only, which makes it the single writer of all bookkeeping.
    """

    def __init__(
        self,
        order: list[str],
        prerequisites: dict[str, set[str]],
        max_workers: int,
        cancelled: threading.Event,
    ):
        nodes = set(order)
        self.prerequisites = {node: set(prerequisites.get(node, ())) & nodes for node in order}
        self.max_workers = max(1, max_workers)
        self.cancelled = cancelled
        self.completed: list[str] = []
        self.remaining: list[str] = list(order)

    def run(
        self,
        prepare: Callable[[str], Optional[Task]],
        complete: Callable[[str, OperationResult], bool],
    ) -> bool:
        """
        :param prepare: returns the task of a node, or None if the node completed without a task;
            raising a ``StackError`` fails the node
        :param complete: handles the result of a task, returns False if the node failed
        :returns: True if all nodes completed
        """
        failed = False
        running = {}
        with ThreadPoolExecutor(self.max_workers, thread_name_prefix="resource_worker") as pool:
            while True:
                if not failed and not self.cancelled.is_set():
                    failed = not self._dispatch(prepare, complete, running, pool)

                if not running:
                    break

                finished, _ = wait(running, timeout=SCHEDULER_TICK, return_when=FIRST_COMPLETED)
                for future in finished:
                    node = running.pop(future)
                    if complete(node, future.result()):
                        self.completed.append(node)
                    else:
                        failed = True

        return not failed and not self.remaining

    def _dispatch(self, prepare, complete, running, pool) -> bool:
        progressed = True
        while progressed:
            progressed = False
            for node in list(self.remaining):
                if not self.prerequisites[node] <= set(self.completed):
                    continue
                self.remaining.remove(node)
                try:
                    task = prepare(node)
                except StackError as e:
                    complete(node, OperationResult(error=e))
                    return False
                if task is None:
                    self.completed.append(node)
                    progressed = True
                else:
                    running[pool.submit(task)] = node
        return True


class EventRecorder:
    stack_name: str
    on_event: Optional[EventCallback]
    events: list[StackEvent]

    def _emit(
        self,
        logical_id: str,
        resource_type: str,
        status: Any,
        physical_id: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        event = StackEvent(
            stack_name=self.stack_name,
            logical_resource_id=logical_id,
            resource_type=resource_type,
            status=status,
            physical_resource_id=physical_id,
            reason=reason,
        )
        self.events.append(event)
        LOG.info("%s %s %s %s", self.stack_name, logical_id, status.value, reason or "")
        if self.on_event:
            self.on_event(event)


class Deployer(EventRecorder):
    """
    Drives a change set against the resource providers: applies creates and updates in dependency
    order, removes obsolete resources in a cleanup phase, and on failure (or cancellation) rolls back
    the applied changes by replaying the compensation journal in reverse.
    """

    def __init__(
        self,
        stack: Stack,
        change_set: ChangeSet,
        state: StackState,
        executor: ResourceProviderExecutor,
        *,
        disable_rollback: Optional[bool] = None,
        max_workers: Optional[int] = None,
        on_event: Optional[EventCallback] = None,
    ):
        self.stack = stack
        self.stack_name = stack.stack_name
        self.change_set = change_set
        self.state = state
        self.executor = executor
        self.disable_rollback = (
            config.DISABLE_ROLLBACK if disable_rollback is None else disable_rollback
        )
        self.max_workers = max_workers or config.MAX_WORKERS
        self.on_event = on_event

        self.previous_records = state.snapshot_resources()
        self.records: dict[str, dict] = {}
        self.statuses = {name: ResourceStatus.PENDING for name in change_set.creation_order}
        self.gates = {name: ResourceGate() for name in change_set.creation_order}
        self.journal: list[JournalEntry] = []
        self.events: list[StackEvent] = []
        self._cancelled = threading.Event()
        self._resolver = create_resolver(stack, resource_lookup=self._lookup)

    def cancel(self):
        """Stop dispatching new operations, the running ones finish and the stack is rolled back"""
        LOG.info("Cancelling deployment of stack %s", self.stack_name)
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def wait_for(
        self, logical_resource_id: str, timeout: Optional[float] = None
    ) -> Optional[ResourceStatus]:
        """Block until the given resource reached a final state, returns None on timeout"""
        gate = self.gates[logical_resource_id]
        if not gate.wait(timeout):
            return None
        return gate.status

    def deploy(self) -> DeployOutcome:
        self._set_stack_status(StackStatus.IN_PROGRESS)

        error = self._apply()
        outputs, exports = {}, {}
        if error is None:
            try:
                outputs, exports = resolve_outputs(self.stack, self._resolver)
            except StackError as e:
                error = e

        if error is None:
            self._cleanup()
            self.state.document["Outputs"] = outputs
            self.state.document["Exports"] = exports
            self._set_stack_status(StackStatus.COMPLETE)
            return DeployOutcome(StackStatus.COMPLETE, outputs=outputs, exports=exports)

        for name, status in self.statuses.items():
            if status == ResourceStatus.PENDING:
                self._set_status(name, ResourceStatus.SKIPPED)

        self._journal_late_operations()

        if self.disable_rollback:
            LOG.info("Rollback disabled, leaving stack %s failed", self.stack_name)
            self._set_stack_status(StackStatus.FAILED, str(error))
            return DeployOutcome(StackStatus.FAILED, error=error)

        self._set_stack_status(StackStatus.ROLLBACK_IN_PROGRESS, str(error))
        rollback_error = self._rollback()
        if rollback_error:
            self._set_stack_status(StackStatus.FAILED, str(rollback_error))
            return DeployOutcome(StackStatus.FAILED, error=rollback_error)

        self._set_stack_status(StackStatus.ROLLED_BACK, str(error))
        return DeployOutcome(StackStatus.ROLLED_BACK, error=error)

    # apply phase

    def _apply(self) -> Optional[StackError]:
        errors: list[StackError] = []

        def complete(logical_id: str, result: OperationResult) -> bool:
            self.journal.extend(result.journal)
            change = self.change_set.changes[logical_id]
            resource_type = change.resource_type
            if result.error:
                error = result.error
                error.logical_resource_id = error.logical_resource_id or logical_id
                error.operation = error.operation or change.action.value
                errors.append(error)
                # the original of a destroy-before-create replacement is gone already
                if any(entry.action == "destroyed" for entry in result.journal):
                    self.state.remove_resource(logical_id)
                self._set_status(logical_id, ResourceStatus.FAILED)
                self._emit(logical_id, resource_type, ResourceStatus.FAILED, reason=error.message)
                return False

            physical_id = result.record.get("PhysicalResourceId")
            self.records[logical_id] = result.record
            self.state.set_resource(logical_id, result.record)
            self._set_status(logical_id, ResourceStatus.COMPLETE)
            self._emit(logical_id, resource_type, ResourceStatus.COMPLETE, physical_id=physical_id)
            return True

        scheduler = GraphScheduler(
            self.change_set.creation_order,
            self.stack.dependencies,
            self.max_workers,
            self._cancelled,
        )
        scheduler.run(self._prepare, complete)

        if errors:
            return errors[0]
        if scheduler.remaining:
            return StackError("Deployment cancelled by user", operation="deploy")
        return None

    def _prepare(self, logical_id: str) -> Optional[Task]:
        change = self.change_set.changes[logical_id]
        resource = self.stack.resources[logical_id]
        previous = self.previous_records.get(logical_id)
        dependencies = sorted(self.stack.dependencies.get(logical_id, ()))

        if change.action == ChangeAction.NONE and not change.recheck:
            return self._keep(logical_id, resource, previous, dependencies)

        properties = self._resolver.resolve(resource.properties, logical_id) or {}
        if change.recheck:
            self._reevaluate(change, previous, properties)
            if change.action == ChangeAction.NONE:
                return self._keep(logical_id, resource, previous, dependencies)

        self._set_status(logical_id, ResourceStatus.IN_PROGRESS)
        self._emit(
            logical_id,
            resource.type,
            ResourceStatus.IN_PROGRESS,
            physical_id=change.physical_resource_id,
            reason=describe_change(change),
        )

        def new_record(physical_id: str, model: dict, generation: int) -> dict:
            return {
                "Type": resource.type,
                "PhysicalResourceId": physical_id,
                "Attributes": model,
                "Properties": properties,
                "DeclaredProperties": resource.properties,
                "Dependencies": dependencies,
                "Status": ResourceStatus.COMPLETE.value,
                "Generation": generation,
                "DeletionPolicy": resource.deletion_policy,
            }

        def create_task() -> OperationResult:
            result = OperationResult()
            try:
                physical_id, model = self.executor.create(logical_id, resource.type, properties)
                result.journal.append(
                    JournalEntry("created", logical_id, resource.type, physical_id, None, properties)
                )
                result.record = new_record(physical_id, model, 0)
            except StackError as e:
                result.error = e
            return result

        def update_task() -> OperationResult:
            result = OperationResult()
            physical_id = previous["PhysicalResourceId"]
            try:
                model = self.executor.update(
                    logical_id,
                    resource.type,
                    physical_id,
                    properties,
                    previous.get("Properties") or {},
                )
                result.journal.append(
                    JournalEntry(
                        "updated", logical_id, resource.type, physical_id, previous, properties
                    )
                )
                result.record = new_record(physical_id, model, previous.get("Generation", 0))
            except StackError as e:
                result.error = e
            return result

        def replace_task() -> OperationResult:
            result = OperationResult()
            generation = previous.get("Generation", 0) + 1
            create_first = change.strategy == ReplacementStrategy.CREATE_BEFORE_DESTROY
            try:
                if not create_first:
                    self.executor.delete(
                        logical_id,
                        previous["Type"],
                        previous["PhysicalResourceId"],
                        previous.get("Properties"),
                    )
                    result.journal.append(
                        JournalEntry(
                            "destroyed",
                            logical_id,
                            previous["Type"],
                            previous["PhysicalResourceId"],
                            previous,
                            previous.get("Properties") or {},
                        )
                    )
                physical_id, model = self.executor.create(
                    logical_id, resource.type, properties, generation
                )
                # undoing the creation of a create-before-destroy replacement restores the original
                result.journal.append(
                    JournalEntry(
                        "created",
                        logical_id,
                        resource.type,
                        physical_id,
                        previous if create_first else None,
                        properties,
                    )
                )
                result.record = new_record(physical_id, model, generation)
            except StackError as e:
                result.error = e
            return result

        if change.action == ChangeAction.ADD:
            return guarded(logical_id, "create", create_task)
        if change.replacement:
            return guarded(logical_id, "replace", replace_task)
        return guarded(logical_id, "update", update_task)

    def _keep(
        self, logical_id: str, resource: Resource, previous: dict, dependencies: list[str]
    ) -> None:
        record = {
            **previous,
            "Dependencies": dependencies,
            "DeletionPolicy": resource.deletion_policy,
        }
        self.records[logical_id] = record
        self.state.set_resource(logical_id, record)
        self._set_status(logical_id, ResourceStatus.COMPLETE)

    def _reevaluate(self, change: ResourceChange, previous: dict, properties: dict):
        """
        Compare the resolved properties of a resource that references updated resources with the
        deployed ones. The change becomes an update, or a replacement if a create-only property differs.
        """
        resolved_changes = diff_properties(previous.get("Properties") or {}, properties)
        if not resolved_changes:
            return

        logical_id = change.logical_resource_id
        changed = sorted(set(change.changed_properties) | set(resolved_changes))
        schema = self.executor.registry.get_schema(change.resource_type)
        LOG.debug("Resolved properties %s of resource %s changed", resolved_changes, logical_id)

        change.action = ChangeAction.MODIFY
        change.changed_properties = changed
        if set(changed) & create_only_properties(schema):
            change.replacement = True
            change.strategy = choose_strategy(logical_id, self.stack, self.previous_records)
            self.change_set.removal_order = compute_removal_order(
                self.change_set.changes, self.previous_records
            )

    def _journal_late_operations(self):
        """Journal provider calls that completed after their attempt timed out, so rollback undoes them"""
        for request, event in self.executor.wait_for_abandoned_operations():
            entry = self._late_journal_entry(request, event)
            if entry is None:
                continue
            LOG.warning(
                "%s of resource %s (%s) completed after it timed out",
                request.action,
                entry.logical_resource_id,
                entry.physical_resource_id,
            )
            self.journal.append(entry)
            if self.disable_rollback and entry.action == "created":
                self._track_late_creation(entry, event)

    def _late_journal_entry(
        self, request: ResourceRequest, event: ProgressEvent
    ) -> Optional[JournalEntry]:
        logical_id = request.logical_resource_id
        resource_type = request.resource_type
        previous = self.previous_records.get(logical_id)
        journaled = {(entry.action, entry.physical_resource_id) for entry in self.journal}

        match request.action:
            case "Add":
                try:
                    physical_id = extract_physical_resource_id(
                        event.resource_model or {}, self.executor.registry.get_schema(resource_type)
                    )
                except StackError as e:
                    LOG.warning("Cannot track late creation of resource %s: %s", logical_id, e)
                    return None
                if ("created", physical_id) in journaled:
                    return None
                if previous and previous.get("PhysicalResourceId") == physical_id:
                    return None
                # the original of a create-before-destroy replacement is restored on rollback
                change = self.change_set.changes.get(logical_id)
                create_first = change and change.strategy == ReplacementStrategy.CREATE_BEFORE_DESTROY
                return JournalEntry(
                    "created",
                    logical_id,
                    resource_type,
                    physical_id,
                    previous if create_first else None,
                    request.desired_state,
                )
            case "Modify":
                physical_id = request.physical_resource_id
                if previous is None or ("updated", physical_id) in journaled:
                    return None
                return JournalEntry(
                    "updated", logical_id, resource_type, physical_id, previous, request.desired_state
                )
            case "Remove":
                physical_id = request.physical_resource_id
                if previous is None or previous.get("PhysicalResourceId") != physical_id:
                    return None
                if ("destroyed", physical_id) in journaled:
                    return None
                return JournalEntry(
                    "destroyed",
                    logical_id,
                    previous["Type"],
                    physical_id,
                    previous,
                    previous.get("Properties") or {},
                )
        return None

    def _track_late_creation(self, entry: JournalEntry, event: ProgressEvent):
        """Keep a resource created after its timeout in the state, so a later deployment manages it"""
        logical_id = entry.logical_resource_id
        resource = self.stack.resources.get(logical_id)
        if resource is None or entry.previous_record is not None:
            return
        previous = self.previous_records.get(logical_id) or {}
        record = {
            "Type": resource.type,
            "PhysicalResourceId": entry.physical_resource_id,
            "Attributes": event.resource_model or {},
            "Properties": entry.properties,
            "DeclaredProperties": resource.properties,
            "Dependencies": sorted(self.stack.dependencies.get(logical_id, ())),
            "Status": ResourceStatus.FAILED.value,
            "Generation": previous.get("Generation", -1) + 1,
            "DeletionPolicy": resource.deletion_policy,
        }
        self.state.set_resource(logical_id, record)

    def _lookup(self, logical_id: str, attribute: Optional[str]) -> Any:
        record = self.records.get(logical_id)
        if record is None:
            raise InvalidTemplateError(
                f"Resource {logical_id} is not deployed yet",
                logical_resource_id=logical_id,
                operation="resolve",
            )
        if attribute is None:
            return record["PhysicalResourceId"]
        try:
            return lookup_attribute(record, attribute)
        except KeyError:
            raise InvalidTemplateError(
                f"Template error: resource {logical_id} does not support attribute type "
                f"{attribute} in Fn::GetAtt",
                logical_resource_id=logical_id,
                operation="resolve",
            )

    # cleanup phase

    def _cleanup(self):
        """Delete removed resources and the originals of replaced resources, dependents first"""
        for logical_id in self.change_set.removal_order:
            previous = self.previous_records[logical_id]
            resource_type = previous["Type"]
            physical_id = previous.get("PhysicalResourceId")
            removed = self.change_set.changes[logical_id].action == ChangeAction.REMOVE
            if removed and previous.get("DeletionPolicy") == RETAIN:
                LOG.info("Retaining resource %s (%s)", logical_id, physical_id)
                self.state.remove_resource(logical_id)
                self._emit(
                    logical_id,
                    resource_type,
                    ResourceStatus.DELETE_COMPLETE,
                    physical_id,
                    "Resource retained",
                )
                continue
            self._emit(
                logical_id, resource_type, ResourceStatus.DELETE_IN_PROGRESS, physical_id
            )
            try:
                self.executor.delete(
                    logical_id, resource_type, physical_id, previous.get("Properties")
                )
            except StackError as e:
                LOG.warning("Failed to clean up resource %s (%s): %s", logical_id, physical_id, e)
                self._emit(
                    logical_id, resource_type, ResourceStatus.DELETE_FAILED, physical_id, e.message
                )
                continue
            if removed:
                self.state.remove_resource(logical_id)
            self._emit(logical_id, resource_type, ResourceStatus.DELETE_COMPLETE, physical_id)

    # rollback

    def _rollback(self) -> Optional[RollbackFailedError]:
        failures = []
        for entry in reversed(self.journal):
            try:
                self._undo(entry)
            except StackError as e:
                LOG.warning(
                    "Failed to roll back %s of resource %s: %s",
                    entry.action,
                    entry.logical_resource_id,
                    e,
                )
                e.logical_resource_id = e.logical_resource_id or entry.logical_resource_id
                failures.append(e)
                status = (
                    ResourceStatus.DELETE_FAILED
                    if entry.action == "created"
                    else ResourceStatus.FAILED
                )
                self._emit(
                    entry.logical_resource_id,
                    entry.resource_type,
                    status,
                    entry.physical_resource_id,
                    e.message,
                )
        if failures:
            return RollbackFailedError(failures)
        return None

    def _undo(self, entry: JournalEntry):
        logical_id = entry.logical_resource_id
        resource_type = entry.resource_type
        physical_id = entry.physical_resource_id
        previous = entry.previous_record

        match entry.action:
            case "created":
                self._emit(logical_id, resource_type, ResourceStatus.DELETE_IN_PROGRESS, physical_id)
                self.executor.delete(logical_id, resource_type, physical_id, entry.properties)
                if previous:
                    self.state.set_resource(logical_id, previous)
                else:
                    self.state.remove_resource(logical_id)
                self._emit(logical_id, resource_type, ResourceStatus.DELETE_COMPLETE, physical_id)
            case "updated":
                self._emit(
                    logical_id,
                    resource_type,
                    ResourceStatus.IN_PROGRESS,
                    physical_id,
                    "Restoring previous properties",
                )
                model = self.executor.update(
                    logical_id,
                    resource_type,
                    physical_id,
                    previous.get("Properties") or {},
                    entry.properties,
                )
                self.state.set_resource(logical_id, {**previous, "Attributes": model})
                self._emit(logical_id, resource_type, ResourceStatus.COMPLETE, physical_id)
            case "destroyed":
                self._emit(
                    logical_id,
                    resource_type,
                    ResourceStatus.IN_PROGRESS,
                    reason="Restoring destroyed resource",
                )
                physical_id, model = self.executor.create(
                    logical_id,
                    resource_type,
                    previous.get("Properties") or {},
                    f"{previous.get('Generation', 0)}-restore-{short_uid()}",
                )
                self.state.set_resource(
                    logical_id,
                    {**previous, "PhysicalResourceId": physical_id, "Attributes": model},
                )
                self._emit(logical_id, resource_type, ResourceStatus.COMPLETE, physical_id)
            case _:
                raise ValueError(f"Unknown journal action {entry.action}")

    # bookkeeping

    def _set_status(self, logical_id: str, status: ResourceStatus):
        self.statuses[logical_id] = status
        if status in (ResourceStatus.COMPLETE, ResourceStatus.FAILED, ResourceStatus.SKIPPED):
            self.gates[logical_id].open(status)

    def _set_stack_status(self, status: StackStatus, reason: Optional[str] = None):
        self.state.set_status(status, reason)
        self._emit(self.stack_name, STACK_RESOURCE_TYPE, status, self.stack.stack_id, reason)


class StackTeardown(EventRecorder):
    """Deletes all persisted resources of a stack, dependents before their dependencies"""

    def __init__(
        self,
        stack_name: str,
        state: StackState,
        executor: ResourceProviderExecutor,
        *,
        max_workers: Optional[int] = None,
        on_event: Optional[EventCallback] = None,
    ):
        self.stack_name = stack_name
        self.state = state
        self.executor = executor
        self.max_workers = max_workers or config.MAX_WORKERS
        self.on_event = on_event
        self.events: list[StackEvent] = []

    def run(self) -> DeployOutcome:
        resources = self.state.snapshot_resources()
        graph = previous_dependency_graph(resources)
        order = deletion_order(graph, list(resources))
        # a resource can be deleted once everything that depends on it is gone
        prerequisites = {
            name: {other for other, deps in graph.items() if name in deps} for name in resources
        }

        self._set_stack_status(StackStatus.DELETE_IN_PROGRESS)
        errors: list[StackError] = []

        def prepare(logical_id: str) -> Task:
            record = resources[logical_id]
            if record.get("DeletionPolicy") == RETAIN:
                return lambda: OperationResult(record=record)
            self._emit(
                logical_id,
                record["Type"],
                ResourceStatus.DELETE_IN_PROGRESS,
                record.get("PhysicalResourceId"),
            )

            def delete_task() -> OperationResult:
                try:
                    self.executor.delete(
                        logical_id,
                        record["Type"],
                        record.get("PhysicalResourceId"),
                        record.get("Properties"),
                    )
                    return OperationResult(record=record)
                except StackError as e:
                    return OperationResult(error=e)

            return guarded(logical_id, "delete", delete_task)

        def complete(logical_id: str, result: OperationResult) -> bool:
            record = resources[logical_id]
            physical_id = record.get("PhysicalResourceId")
            if result.error:
                errors.append(result.error)
                self._emit(
                    logical_id,
                    record["Type"],
                    ResourceStatus.DELETE_FAILED,
                    physical_id,
                    result.error.message,
                )
                return False
            self.state.remove_resource(logical_id)
            if record.get("DeletionPolicy") == RETAIN:
                LOG.info("Retaining resource %s (%s)", logical_id, physical_id)
                self._emit(
                    logical_id,
                    record["Type"],
                    ResourceStatus.DELETE_COMPLETE,
                    physical_id,
                    "Resource retained",
                )
                return True
            self._emit(logical_id, record["Type"], ResourceStatus.DELETE_COMPLETE, physical_id)
            return True

        scheduler = GraphScheduler(order, prerequisites, self.max_workers, threading.Event())
        scheduler.run(prepare, complete)

        if errors:
            self._set_stack_status(StackStatus.DELETE_FAILED, str(errors[0]))
            return DeployOutcome(StackStatus.DELETE_FAILED, error=errors[0])

        self.state.document["Outputs"] = {}
        self.state.document["Exports"] = {}
        self._set_stack_status(StackStatus.DELETE_COMPLETE)
        return DeployOutcome(StackStatus.DELETE_COMPLETE)

    def _set_stack_status(self, status: StackStatus, reason: Optional[str] = None):
        self.state.set_status(status, reason)
        self._emit(self.stack_name, STACK_RESOURCE_TYPE, status, self.state.stack_id, reason)


def describe_change(change: ResourceChange) -> str:
    if change.action == ChangeAction.ADD:
        return "Resource creation initiated"
    if change.replacement:
        return (
            "Requested update requires the replacement of the resource "
            f"({change.strategy.value})"
        )
    return f"Updating properties {change.changed_properties}"
