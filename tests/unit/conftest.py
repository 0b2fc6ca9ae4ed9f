import threading
from collections import defaultdict
from typing import Callable

import pytest

from stackrecon import config
from stackrecon.engine.errors import ResourceNotFound
from stackrecon.providers.control_plane import LocalControlPlane, set_control_plane
from stackrecon.resource_provider import (
    OperationStatus,
    ProgressEvent,
    ResourceProvider,
    ResourceProviderExecutor,
    ResourceProviderRegistry,
    ResourceRequest,
)
from stackrecon.stores import StackStore

TEST_RESOURCE_TYPE = "Test::Resource"


class RecordingProvider(ResourceProvider[dict]):
    """
    In-memory resource provider for engine tests. Records every call, and lets tests inject failures
    (``fail``) or arbitrary behavior (``on``) per operation and logical id.
    """

    SCHEMA = {
        "typeName": TEST_RESOURCE_TYPE,
        "primaryIdentifier": ["/properties/Id"],
        "createOnlyProperties": ["/properties/Immutable"],
        "readOnlyProperties": ["/properties/Id", "/properties/Arn"],
        "required": [],
    }

    def __init__(self):
        self.resources: dict[str, dict] = {}
        self.tokens: dict[str, str] = {}
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[tuple[str, str], list[Exception]] = defaultdict(list)
        self._hooks: dict[tuple[str, str], Callable[[ResourceRequest], None]] = {}
        self._counter = 0
        self._mutex = threading.RLock()

    def fail(self, action: str, logical_id: str, error: Exception, times: int = 1):
        self._failures[(action, logical_id)].extend([error] * times)

    def on(self, action: str, logical_id: str, hook: Callable[[ResourceRequest], None]):
        self._hooks[(action, logical_id)] = hook

    def calls_of(self, action: str) -> list[str]:
        return [logical_id for call_action, logical_id in self.calls if call_action == action]

    def _before(self, action: str, request: ResourceRequest):
        with self._mutex:
            self.calls.append((action, request.logical_resource_id))
            failures = self._failures.get((action, request.logical_resource_id))
            error = failures.pop(0) if failures else None
        if hook := self._hooks.get((action, request.logical_resource_id)):
            hook(request)
        if error:
            raise error

    def create(self, request: ResourceRequest[dict]) -> ProgressEvent[dict]:
        self._before("create", request)
        with self._mutex:
            if existing := self.tokens.get(request.idempotency_token):
                if existing in self.resources:
                    return ProgressEvent(OperationStatus.SUCCESS, dict(self.resources[existing]))
            self._counter += 1
            physical_id = f"{request.logical_resource_id}-{self._counter}"
            model = {
                **request.desired_state,
                "Id": physical_id,
                "Arn": f"arn:test:{physical_id}",
            }
            self.resources[physical_id] = model
            self.tokens[request.idempotency_token] = physical_id
            return ProgressEvent(OperationStatus.SUCCESS, dict(model))

    def read(self, request: ResourceRequest[dict]) -> ProgressEvent[dict]:
        self._before("read", request)
        with self._mutex:
            if request.physical_resource_id not in self.resources:
                raise ResourceNotFound(f"{request.physical_resource_id} does not exist")
            return ProgressEvent(
                OperationStatus.SUCCESS, dict(self.resources[request.physical_resource_id])
            )

    def update(self, request: ResourceRequest[dict]) -> ProgressEvent[dict]:
        self._before("update", request)
        with self._mutex:
            current = self.resources[request.physical_resource_id]
            model = {**request.desired_state, "Id": current["Id"], "Arn": current["Arn"]}
            self.resources[request.physical_resource_id] = model
            return ProgressEvent(OperationStatus.SUCCESS, dict(model))

    def delete(self, request: ResourceRequest[dict]) -> ProgressEvent[dict]:
        self._before("delete", request)
        with self._mutex:
            if self.resources.pop(request.physical_resource_id, None) is None:
                raise ResourceNotFound(f"{request.physical_resource_id} does not exist")
            return ProgressEvent(OperationStatus.SUCCESS, {})


@pytest.fixture(autouse=True)
def fast_provider_config(monkeypatch, tmp_path):
    """Keep retries and polling fast, and all state inside the test's temporary directory."""
    monkeypatch.setattr(config, "PROVIDER_RETRY_INITIAL_INTERVAL", 0.001)
    monkeypatch.setattr(config, "PROVIDER_POLL_INTERVAL", 0)
    monkeypatch.setattr(config, "PROVIDER_MAX_RETRIES", 2)
    monkeypatch.setattr(config, "PER_RESOURCE_TIMEOUT", 10.0)
    monkeypatch.setattr(config, "MAX_WORKERS", 4)
    monkeypatch.setattr(config, "STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setattr(config, "IGNORE_UNSUPPORTED_RESOURCE_TYPES", False)


@pytest.fixture(autouse=True)
def control_plane():
    control_plane = LocalControlPlane()
    set_control_plane(control_plane)
    yield control_plane
    set_control_plane(None)


@pytest.fixture
def provider() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture
def registry(provider) -> ResourceProviderRegistry:
    return ResourceProviderRegistry({TEST_RESOURCE_TYPE: provider})


@pytest.fixture
def store() -> StackStore:
    return StackStore(persistent=False)


@pytest.fixture
def executor_factory(registry):
    executors = []

    def _create(stack_name: str = "test-stack", stack_id: str = "stack-id") -> ResourceProviderExecutor:
        executor = ResourceProviderExecutor(
            stack_name=stack_name,
            stack_id=stack_id,
            registry=registry,
            region_name="us-east-1",
            account_id="000000000000",
        )
        executors.append(executor)
        return executor

    yield _create

    for executor in executors:
        executor.shutdown()
