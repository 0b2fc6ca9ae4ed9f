"""
Public entry points of stackrecon: deploy, plan, tear down and inspect stacks.

Every function takes an optional ``StackStore`` (persisted stack documents) and an optional
``ResourceProviderRegistry``; by default the stacks are stored under ``STATE_DIR`` and the resource
providers are discovered as plugins.
"""

import logging
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Optional, Union

from stackrecon import config
from stackrecon.engine.deployer import Deployer, DeployOutcome, EventCallback, StackTeardown
from stackrecon.engine.entities import Stack, StackEvent, StackStatus
from stackrecon.engine.errors import StackError
from stackrecon.engine.planner import ChangeSet, create_change_set, diff_properties
from stackrecon.engine.template_parser import parse_template
from stackrecon.engine.template_preparer import prepare_stack
from stackrecon.engine.types import RawTemplate
from stackrecon.resource_provider import ResourceProviderExecutor, ResourceProviderRegistry
from stackrecon.stores import StackState, StackStore
from stackrecon.utils.strings import long_uid

LOG = logging.getLogger(__name__)

TemplateInput = Union[str, RawTemplate]


@dataclass
class DeploymentResult:
    stack_name: str
    status: StackStatus
    events: list[StackEvent] = field(default_factory=list)
    outputs: dict[str, Any] = field(default_factory=dict)
    exports: dict[str, Any] = field(default_factory=dict)
    error: Optional[StackError] = None
    change_set: Optional[ChangeSet] = None

    @property
    def succeeded(self) -> bool:
        return not self.status.is_failure


class DriftStatus(str, Enum):
    IN_SYNC = "IN_SYNC"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class ResourceDrift:
    logical_resource_id: str
    resource_type: str
    physical_resource_id: Optional[str]
    status: DriftStatus
    # attribute name -> {"Expected": ..., "Actual": ...}
    differences: dict[str, dict] = field(default_factory=dict)


def generate_stack_id(stack_name: str, region: str, account_id: str) -> str:
    return f"arn:aws:cloudformation:{region}:{account_id}:stack/{stack_name}/{long_uid()}"


def load_template(template: TemplateInput) -> RawTemplate:
    if isinstance(template, str):
        return parse_template(template)
    return template


class Deployment:
    """
    A planned deployment of a stack. The template has passed all pre-flight checks and the change set is
    computed, but nothing was mutated yet. ``run`` applies the change set, ``cancel`` may be called from
    any thread while it runs.
    """

    def __init__(
        self,
        stack: Stack,
        change_set: ChangeSet,
        store: StackStore,
        registry: ResourceProviderRegistry,
        *,
        reset_state: bool = False,
        missing_resources: Optional[list[str]] = None,
        disable_rollback: Optional[bool] = None,
        max_workers: Optional[int] = None,
        on_event: Optional[EventCallback] = None,
    ):
        self.stack = stack
        self.change_set = change_set
        self.store = store
        self.registry = registry
        self.reset_state = reset_state
        self.missing_resources = missing_resources or []
        self.disable_rollback = disable_rollback
        self.max_workers = max_workers
        self.on_event = on_event
        self.deployer: Optional[Deployer] = None
        self._cancelled = threading.Event()

    @property
    def stack_name(self) -> str:
        return self.stack.stack_name

    def cancel(self):
        self._cancelled.set()
        if self.deployer:
            self.deployer.cancel()

    def run(self) -> DeploymentResult:
        if self.reset_state:
            # a deleted stack is deployed from scratch, under a new stack id
            self.store.delete(self.stack_name)
        state = self.store.get(self.stack_name)
        for logical_id in self.missing_resources:
            LOG.info("Resource %s of stack %s no longer exists", logical_id, self.stack_name)
            state.remove_resource(logical_id)

        previous_template = state.template
        previous_parameters = state.document.get("Parameters")
        state.document.update(
            {
                "StackId": self.stack.stack_id,
                "Region": self.stack.region,
                "AccountId": self.stack.account_id,
                "Template": self.stack.template,
                "Parameters": {
                    name: param.display_value for name, param in self.stack.parameters.items()
                },
            }
        )

        executor = create_executor(self.stack_name, state, self.registry)
        try:
            self.deployer = Deployer(
                self.stack,
                self.change_set,
                state,
                executor,
                disable_rollback=self.disable_rollback,
                max_workers=self.max_workers,
                on_event=self.on_event,
            )
            if self._cancelled.is_set():
                self.deployer.cancel()
            outcome = self.deployer.deploy()
        finally:
            executor.shutdown()

        if outcome.status == StackStatus.ROLLED_BACK and previous_template is not None:
            state.document["Template"] = previous_template
            state.document["Parameters"] = previous_parameters
            state.save()

        return _result(self.stack_name, outcome, self.deployer.events, self.change_set)


def create_executor(
    stack_name: str, state: StackState, registry: ResourceProviderRegistry
) -> ResourceProviderExecutor:
    return ResourceProviderExecutor(
        stack_name=stack_name,
        stack_id=state.stack_id,
        registry=registry,
        region_name=state.document.get("Region") or config.DEFAULT_REGION,
        account_id=state.document.get("AccountId") or config.ACCOUNT_ID,
    )


def create_deployment(
    template: TemplateInput,
    stack_name: str,
    parameters: Optional[dict[str, Any]] = None,
    *,
    store: Optional[StackStore] = None,
    registry: Optional[ResourceProviderRegistry] = None,
    region: Optional[str] = None,
    account_id: Optional[str] = None,
    disable_rollback: Optional[bool] = None,
    max_workers: Optional[int] = None,
    refresh: bool = False,
    on_event: Optional[EventCallback] = None,
) -> Deployment:
    """
    Run the pre-flight phase and plan the deployment.

    :raises PreflightError: if the template or the parameters are invalid; nothing was mutated then
    """
    store = store or StackStore()
    registry = registry or ResourceProviderRegistry()
    stack, change_set, reset_state, missing = _plan(
        template, stack_name, parameters, store, registry, region, account_id, refresh
    )
    return Deployment(
        stack,
        change_set,
        store,
        registry,
        reset_state=reset_state,
        missing_resources=missing,
        disable_rollback=disable_rollback,
        max_workers=max_workers,
        on_event=on_event,
    )


def deploy_stack(
    template: TemplateInput,
    stack_name: str,
    parameters: Optional[dict[str, Any]] = None,
    **kwargs,
) -> DeploymentResult:
    """
    Deploy the template as the given stack: create it, or converge an existing stack to the template.
    Accepts the keyword arguments of ``create_deployment``.

    :raises PreflightError: if the template or the parameters are invalid
    """
    return create_deployment(template, stack_name, parameters, **kwargs).run()


class DeploymentStream:
    """
    Iterates over the events of a deployment while it runs in a background thread. Pre-flight errors are
    raised when the stream is created. ``result`` is available once the iteration finished.
    """

    def __init__(self, deployment: Deployment):
        self.deployment = deployment
        self.result: Optional[DeploymentResult] = None
        self._events: queue.Queue = queue.Queue()
        self._error: Optional[BaseException] = None
        callback = deployment.on_event

        def _on_event(event: StackEvent):
            self._events.put(event)
            if callback:
                callback(event)

        deployment.on_event = _on_event
        self._thread = threading.Thread(
            target=self._run, name=f"deploy-{deployment.stack_name}", daemon=True
        )

    def _run(self):
        try:
            self.result = self.deployment.run()
        except BaseException as e:
            self._error = e
        finally:
            self._events.put(None)

    def cancel(self):
        self.deployment.cancel()

    def __iter__(self) -> Iterator[StackEvent]:
        if self._thread.ident is None:
            self._thread.start()
        while (event := self._events.get()) is not None:
            yield event
        self._thread.join()
        if self._error:
            raise self._error


def stream_deploy(
    template: TemplateInput,
    stack_name: str,
    parameters: Optional[dict[str, Any]] = None,
    **kwargs,
) -> DeploymentStream:
    """Like ``deploy_stack``, but returns a stream of the stack events as they happen"""
    return DeploymentStream(create_deployment(template, stack_name, parameters, **kwargs))


def plan_stack(
    template: TemplateInput,
    stack_name: str,
    parameters: Optional[dict[str, Any]] = None,
    *,
    store: Optional[StackStore] = None,
    registry: Optional[ResourceProviderRegistry] = None,
    region: Optional[str] = None,
    account_id: Optional[str] = None,
    refresh: bool = False,
) -> ChangeSet:
    """Compute the change set a deployment of the template would apply, without mutating anything"""
    store = store or StackStore()
    registry = registry or ResourceProviderRegistry()
    _, change_set, _, _ = _plan(
        template, stack_name, parameters, store, registry, region, account_id, refresh
    )
    return change_set


def validate_template(
    template: TemplateInput,
    parameters: Optional[dict[str, Any]] = None,
    *,
    registry: Optional[ResourceProviderRegistry] = None,
    region: Optional[str] = None,
    account_id: Optional[str] = None,
) -> Stack:
    """Run the pre-flight checks of the template and return the realized stack"""
    registry = registry or ResourceProviderRegistry()
    region = region or config.DEFAULT_REGION
    account_id = account_id or config.ACCOUNT_ID
    return prepare_stack(
        load_template(template),
        "validation",
        generate_stack_id("validation", region, account_id),
        parameters,
        region=region,
        account_id=account_id,
        is_supported_type=registry.is_supported,
    )


def delete_stack(
    stack_name: str,
    *,
    store: Optional[StackStore] = None,
    registry: Optional[ResourceProviderRegistry] = None,
    max_workers: Optional[int] = None,
    on_event: Optional[EventCallback] = None,
) -> DeploymentResult:
    """
    Delete all resources of the stack, dependents before their dependencies.

    :raises StackNotFoundError: if the stack does not exist
    """
    store = store or StackStore()
    registry = registry or ResourceProviderRegistry()
    state = store.require(stack_name)

    executor = create_executor(stack_name, state, registry)
    try:
        teardown = StackTeardown(
            stack_name, state, executor, max_workers=max_workers, on_event=on_event
        )
        outcome = teardown.run()
    finally:
        executor.shutdown()
    return _result(stack_name, outcome, teardown.events)


def detect_drift(
    stack_name: str,
    *,
    store: Optional[StackStore] = None,
    registry: Optional[ResourceProviderRegistry] = None,
) -> list[ResourceDrift]:
    """
    Compare the persisted attributes of every resource of the stack with the actual resource.

    :raises StackNotFoundError: if the stack does not exist
    """
    store = store or StackStore()
    registry = registry or ResourceProviderRegistry()
    state = store.require(stack_name)

    drifts = []
    executor = create_executor(stack_name, state, registry)
    try:
        for logical_id, record in state.snapshot_resources().items():
            physical_id = record.get("PhysicalResourceId")
            actual = executor.read(
                logical_id, record["Type"], physical_id, record.get("Properties")
            )
            drift = ResourceDrift(logical_id, record["Type"], physical_id, DriftStatus.IN_SYNC)
            if actual is None:
                drift.status = DriftStatus.DELETED
            else:
                expected = record.get("Attributes") or {}
                drift.differences = {
                    name: {"Expected": expected.get(name), "Actual": actual.get(name)}
                    for name in diff_properties(expected, actual)
                }
                if drift.differences:
                    drift.status = DriftStatus.MODIFIED
            drifts.append(drift)
    finally:
        executor.shutdown()

    LOG.debug(
        "Drift of stack %s: %s",
        stack_name,
        {drift.logical_resource_id: drift.status.value for drift in drifts},
    )
    return drifts


def get_outputs(stack_name: str, *, store: Optional[StackStore] = None) -> dict[str, Any]:
    """
    :raises StackNotFoundError: if the stack does not exist
    """
    store = store or StackStore()
    return dict(store.require(stack_name).outputs)


def _plan(
    template: TemplateInput,
    stack_name: str,
    parameters: Optional[dict[str, Any]],
    store: StackStore,
    registry: ResourceProviderRegistry,
    region: Optional[str],
    account_id: Optional[str],
    refresh: bool,
) -> tuple[Stack, ChangeSet, bool, list[str]]:
    state = store.get(stack_name)
    reset_state = state.status == StackStatus.DELETE_COMPLETE
    region = region or state.document.get("Region") or config.DEFAULT_REGION
    account_id = account_id or state.document.get("AccountId") or config.ACCOUNT_ID

    if state.exists and not reset_state:
        stack_id = state.stack_id
        previous_resources = state.snapshot_resources()
    else:
        stack_id = generate_stack_id(stack_name, region, account_id)
        previous_resources = {}

    stack = prepare_stack(
        load_template(template),
        stack_name,
        stack_id,
        parameters,
        region=region,
        account_id=account_id,
        is_supported_type=registry.is_supported,
    )

    missing = []
    if refresh and previous_resources:
        missing = _find_missing_resources(state, previous_resources, registry)
        for logical_id in missing:
            previous_resources.pop(logical_id)

    change_set = create_change_set(stack, previous_resources, registry.get_schema)
    return stack, change_set, reset_state, missing


def _find_missing_resources(
    state: StackState, resources: dict[str, dict], registry: ResourceProviderRegistry
) -> list[str]:
    missing = []
    executor = create_executor(state.stack_name, state, registry)
    try:
        for logical_id, record in resources.items():
            model = executor.read(
                logical_id, record["Type"], record.get("PhysicalResourceId"), record.get("Properties")
            )
            if model is None:
                missing.append(logical_id)
    finally:
        executor.shutdown()
    return missing


def _result(
    stack_name: str,
    outcome: DeployOutcome,
    events: list[StackEvent],
    change_set: Optional[ChangeSet] = None,
) -> DeploymentResult:
    return DeploymentResult(
        stack_name=stack_name,
        status=outcome.status,
        events=list(events),
        outputs=outcome.outputs,
        exports=outcome.exports,
        error=outcome.error,
        change_set=change_set,
    )
