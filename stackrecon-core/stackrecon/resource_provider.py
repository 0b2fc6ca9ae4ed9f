from __future__ import annotations

import copy
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum, auto
from logging import Logger
from typing import Any, Generic, Optional, TypeVar

import botocore.exceptions
from plux import Plugin, PluginFinder, PluginManager, PluginSpec

from stackrecon import config
from stackrecon.constants import RESOURCE_PROVIDER_PLUGIN_NAMESPACE
from stackrecon.engine.errors import (
    NoResourceProvider,
    ProviderError,
    ProviderFatalError,
    ProviderTransientError,
    ResourceNotFound,
)
from stackrecon.utils.backoff import ExponentialBackoff
from stackrecon.utils.strings import hash_sha256

LOG = logging.getLogger(__name__)

Properties = TypeVar("Properties")

# error codes of boto based providers that are worth a retry
TRANSIENT_ERROR_CODES = {
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestThrottledException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "ProvisionedThroughputExceededException",
    "TransactionInProgressException",
    "RequestTimeout",
    "RequestTimeoutException",
    "ServiceUnavailable",
    "InternalError",
}

TRANSIENT_BOTOCORE_ERRORS = (
    botocore.exceptions.ConnectTimeoutError,
    botocore.exceptions.ReadTimeoutError,
    botocore.exceptions.EndpointConnectionError,
    botocore.exceptions.ConnectionClosedError,
)


class OperationStatus(Enum):
    PENDING = auto()
    IN_PROGRESS = auto()
    SUCCESS = auto()
    FAILED = auto()


@dataclass
class ProgressEvent(Generic[Properties]):
    status: OperationStatus
    resource_model: Properties

    message: str = ""
    result: Optional[str] = None
    error_code: Optional[str] = None
    custom_context: dict = field(default_factory=dict)


@dataclass
class ResourceRequest(Generic[Properties]):
    stack_name: str
    stack_id: str
    account_id: str
    region_name: str
    action: str

    desired_state: Properties

    logical_resource_id: str
    resource_type: str

    logger: Logger

    # hash of stack id, logical id and replacement generation, stable across retries
    idempotency_token: str = ""
    physical_resource_id: Optional[str] = None
    custom_context: dict = field(default_factory=dict)

    previous_state: Optional[Properties] = None


class StackreconResourceProviderPlugin(Plugin):
    """
    Base class for resource provider plugins.
    """

    namespace = RESOURCE_PROVIDER_PLUGIN_NAMESPACE


class ResourceProvider(Generic[Properties]):
    """
    This provides a base class onto which type specific resource providers are built.

    Every provider declares a ``SCHEMA`` with the ``primaryIdentifier`` (json pointer to the physical id in
    the resource model) and the ``createOnlyProperties`` (changing one of them replaces the resource).
    """

    SCHEMA: dict = {}

    def create(self, request: ResourceRequest[Properties]) -> ProgressEvent[Properties]:
        raise NotImplementedError

    def read(self, request: ResourceRequest[Properties]) -> ProgressEvent[Properties]:
        raise NotImplementedError

    def update(self, request: ResourceRequest[Properties]) -> ProgressEvent[Properties]:
        raise NotImplementedError

    def delete(self, request: ResourceRequest[Properties]) -> ProgressEvent[Properties]:
        raise NotImplementedError


def idempotency_token(stack_id: str, logical_resource_id: str, generation: Any = 0) -> str:
    return hash_sha256(f"{stack_id}/{logical_resource_id}/{generation}")


def resolve_json_pointer(resource_props: dict, primary_id_path: str) -> Any:
    primary_id_path = primary_id_path.replace("/properties", "")
    parts = [p for p in primary_id_path.split("/") if p]

    resolved_part = resource_props
    for part in parts:
        if not isinstance(resolved_part, dict) or part not in resolved_part:
            raise ProviderFatalError(f"Resource model is missing field: {part}")
        resolved_part = resolved_part[part]
    return resolved_part


def extract_physical_resource_id(resource_model: dict, schema: dict) -> str:
    primary_id_paths = schema.get("primaryIdentifier")
    if not primary_id_paths:
        raise ProviderFatalError("A ResourceProvider should always define a primaryIdentifier")
    return "|".join(str(resolve_json_pointer(resource_model, path)) for path in primary_id_paths)


class BuiltinResourceProviderFinder(PluginFinder):
    """Finds the resource provider plugins shipped with stackrecon, without requiring installed entry points"""

    def find_plugins(self) -> list[PluginSpec]:
        from stackrecon.providers import plugins

        return [
            PluginSpec(plugin.namespace, plugin.name, plugin)
            for plugin in vars(plugins).values()
            if isinstance(plugin, type)
            and issubclass(plugin, StackreconResourceProviderPlugin)
            and getattr(plugin, "name", None)
        ]


class ResourceProviderRegistry:
    """
    Resolves resource types to resource providers. Explicitly registered providers take precedence over
    the built-in plugins, which take precedence over plugins installed through entry points.
    """

    def __init__(self, providers: Optional[dict[str, ResourceProvider]] = None):
        self._registered: dict[str, ResourceProvider] = dict(providers or {})
        self._loaded: dict[str, ResourceProvider] = {}
        self._mutex = threading.RLock()
        self.builtin_plugin_manager = PluginManager(
            RESOURCE_PROVIDER_PLUGIN_NAMESPACE, finder=BuiltinResourceProviderFinder()
        )
        self.plugin_manager = PluginManager(RESOURCE_PROVIDER_PLUGIN_NAMESPACE)

    def register(self, resource_type: str, provider: ResourceProvider):
        with self._mutex:
            self._registered[resource_type] = provider

    def is_supported(self, resource_type: str) -> bool:
        try:
            self.get_provider(resource_type)
            return True
        except NoResourceProvider:
            return False

    def get_schema(self, resource_type: str) -> dict:
        return getattr(self.get_provider(resource_type), "SCHEMA", None) or {}

    def get_provider(self, resource_type: str) -> ResourceProvider:
        with self._mutex:
            if provider := self._registered.get(resource_type):
                return provider
            if provider := self._loaded.get(resource_type):
                return provider
            provider = self._load_resource_provider(resource_type)
            self._loaded[resource_type] = provider
            return provider

    def _load_resource_provider(self, resource_type: str) -> ResourceProvider:
        for manager in (self.builtin_plugin_manager, self.plugin_manager):
            try:
                plugin = manager.load(resource_type)
                return plugin.factory()
            except ValueError:
                # could not find a plugin for that name
                pass
            except Exception:
                LOG.warning(
                    "Failed to load resource type %s as a ResourceProvider.",
                    resource_type,
                    exc_info=LOG.isEnabledFor(logging.DEBUG),
                )

        raise NoResourceProvider(resource_type)


class ResourceProviderExecutor:
    """
    Point of abstraction between the reconciliation engine and the resource providers: builds the requests,
    enforces the per-operation timeout, polls operations that are in progress, and retries transient
    failures with exponential backoff.
    """

    def __init__(
        self,
        *,
        stack_name: str,
        stack_id: str,
        registry: ResourceProviderRegistry,
        region_name: str,
        account_id: str,
    ):
        self.stack_name = stack_name
        self.stack_id = stack_id
        self.registry = registry
        self.region_name = region_name
        self.account_id = account_id
        self.provider_executor = ThreadPoolExecutor(thread_name_prefix="provider_executor")
        # provider calls that were still running when their attempt timed out
        self._abandoned: list[tuple[ResourceRequest, Future]] = []
        self._abandoned_lock = threading.Lock()

    def shutdown(self):
        self.provider_executor.shutdown(wait=False, cancel_futures=True)

    def create(
        self,
        logical_resource_id: str,
        resource_type: str,
        properties: dict,
        generation: Any = 0,
    ) -> tuple[str, dict]:
        """Create the resource, returns the physical resource id and the resource model"""
        request = self._build_request(
            "Add",
            logical_resource_id,
            resource_type,
            properties,
            idempotency_token=idempotency_token(self.stack_id, logical_resource_id, generation),
        )
        event = self.execute_with_retries(request)
        schema = self.registry.get_schema(resource_type)
        return extract_physical_resource_id(event.resource_model, schema), event.resource_model

    def update(
        self,
        logical_resource_id: str,
        resource_type: str,
        physical_resource_id: str,
        properties: dict,
        previous_properties: dict,
    ) -> dict:
        request = self._build_request(
            "Modify",
            logical_resource_id,
            resource_type,
            properties,
            physical_resource_id=physical_resource_id,
            previous_state=previous_properties,
        )
        return self.execute_with_retries(request).resource_model

    def delete(
        self,
        logical_resource_id: str,
        resource_type: str,
        physical_resource_id: str,
        properties: Optional[dict] = None,
    ) -> None:
        request = self._build_request(
            "Remove",
            logical_resource_id,
            resource_type,
            properties or {},
            physical_resource_id=physical_resource_id,
        )
        try:
            self.execute_with_retries(request)
        except ResourceNotFound:
            LOG.debug("Resource %s (%s) is already gone", logical_resource_id, physical_resource_id)

    def read(
        self,
        logical_resource_id: str,
        resource_type: str,
        physical_resource_id: str,
        properties: Optional[dict] = None,
    ) -> Optional[dict]:
        """Read the current resource model, returns None if the resource does not exist"""
        request = self._build_request(
            "Read",
            logical_resource_id,
            resource_type,
            properties or {},
            physical_resource_id=physical_resource_id,
        )
        try:
            return self.execute_with_retries(request).resource_model
        except ResourceNotFound:
            return None

    def _build_request(
        self,
        action: str,
        logical_resource_id: str,
        resource_type: str,
        properties: dict,
        **kwargs,
    ) -> ResourceRequest:
        return ResourceRequest(
            stack_name=self.stack_name,
            stack_id=self.stack_id,
            account_id=self.account_id,
            region_name=self.region_name,
            action=action,
            desired_state=copy.deepcopy(properties),
            logical_resource_id=logical_resource_id,
            resource_type=resource_type,
            logger=logging.getLogger(f"{__name__}.{resource_type.replace('::', '.')}"),
            **kwargs,
        )

    def execute_with_retries(self, request: ResourceRequest) -> ProgressEvent:
        backoff = ExponentialBackoff(
            initial_interval=config.PROVIDER_RETRY_INITIAL_INTERVAL,
            max_retries=config.PROVIDER_MAX_RETRIES,
        )
        while True:
            try:
                return self.deploy_loop(request)
            except ProviderTransientError as e:
                e.logical_resource_id = request.logical_resource_id
                e.operation = request.action
                if backoff.exhausted:
                    raise ProviderFatalError(
                        f"Giving up after {backoff.retries + 1} attempts: {e.message}",
                        logical_resource_id=request.logical_resource_id,
                        operation=request.action,
                    ) from e
                sleep_time = backoff.next_backoff()
                LOG.info(
                    "Transient error during %s of %s, retrying in %.2fs: %s",
                    request.action,
                    request.logical_resource_id,
                    sleep_time,
                    e.message,
                )
                time.sleep(sleep_time)

    def deploy_loop(self, request: ResourceRequest) -> ProgressEvent:
        """Run a single attempt of the operation, polling the provider while it reports IN_PROGRESS"""
        request = copy.copy(request)
        request.custom_context = dict(request.custom_context)
        deadline = time.monotonic() + config.PER_RESOURCE_TIMEOUT
        provider = self.registry.get_provider(request.resource_type)

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise self._timeout_error(request)

            event = self.call_provider(provider, request, timeout=remaining)

            match event.status:
                case OperationStatus.SUCCESS:
                    return event
                case OperationStatus.FAILED:
                    raise classify_failed_event(event, request)
                case OperationStatus.IN_PROGRESS | OperationStatus.PENDING:
                    request.custom_context = {**request.custom_context, **event.custom_context}
                    if event.resource_model:
                        request.desired_state = event.resource_model
                    if deadline - time.monotonic() <= config.PROVIDER_POLL_INTERVAL:
                        raise self._timeout_error(request)
                    time.sleep(config.PROVIDER_POLL_INTERVAL)
                case invalid_status:
                    raise ValueError(
                        f"Invalid OperationStatus ({invalid_status}) returned for resource "
                        f"{request.logical_resource_id} (type {request.resource_type})"
                    )

    def call_provider(
        self, provider: ResourceProvider, request: ResourceRequest, timeout: float
    ) -> ProgressEvent:
        handler = {
            "Add": provider.create,
            "Modify": provider.update,
            "Remove": provider.delete,
            "Read": provider.read,
        }[request.action]

        future = self.provider_executor.submit(handler, request)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            with self._abandoned_lock:
                self._abandoned.append((request, future))
            raise self._timeout_error(request)
        except ProviderError as e:
            e.logical_resource_id = e.logical_resource_id or request.logical_resource_id
            e.operation = e.operation or request.action
            raise
        except Exception as e:
            raise classify_exception(e, request) from e

    def wait_for_abandoned_operations(self) -> list[tuple[ResourceRequest, ProgressEvent]]:
        """
        Wait for the provider calls that kept running after their attempt timed out. Returns the calls that
        did not fail, their effects exist although the operation was reported as failed.
        """
        with self._abandoned_lock:
            abandoned, self._abandoned = self._abandoned, []
        if abandoned:
            LOG.info("Waiting for %d timed out provider operations to finish", len(abandoned))

        finished = []
        for request, future in abandoned:
            try:
                event = future.result()
            except Exception as e:
                LOG.debug(
                    "Timed out %s of %s failed: %s", request.action, request.logical_resource_id, e
                )
                continue
            if event.status != OperationStatus.FAILED:
                finished.append((request, event))
        return finished

    def _timeout_error(self, request: ResourceRequest) -> ProviderTransientError:
        return ProviderTransientError(
            f"Operation timed out after {config.PER_RESOURCE_TIMEOUT}s",
            logical_resource_id=request.logical_resource_id,
            operation=request.action,
        )


def classify_exception(error: Exception, request: ResourceRequest) -> ProviderError:
    """Map an exception raised by a provider to a transient or fatal provider error"""
    log_method = LOG.exception if config.VERBOSE_ERRORS else LOG.debug
    log_method("Error during %s of resource %s", request.action, request.logical_resource_id)

    kwargs = {"logical_resource_id": request.logical_resource_id, "operation": request.action}
    if isinstance(error, botocore.exceptions.ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        if code in TRANSIENT_ERROR_CODES:
            return ProviderTransientError(str(error), **kwargs)
        if code.endswith("NotFound") or code.endswith("NotFoundException"):
            return ResourceNotFound(str(error), **kwargs)
        return ProviderFatalError(str(error), **kwargs)
    if isinstance(error, TRANSIENT_BOTOCORE_ERRORS) or isinstance(error, TimeoutError):
        return ProviderTransientError(str(error) or type(error).__name__, **kwargs)
    if isinstance(error, NotImplementedError):
        return ProviderFatalError(
            f"Resource type {request.resource_type} does not support {request.action}", **kwargs
        )
    return ProviderFatalError(f"{type(error).__name__}: {error}", **kwargs)


def classify_failed_event(event: ProgressEvent, request: ResourceRequest) -> ProviderError:
    kwargs = {"logical_resource_id": request.logical_resource_id, "operation": request.action}
    message = event.message or f"{request.action} of {request.logical_resource_id} failed"
    if event.error_code in TRANSIENT_ERROR_CODES:
        return ProviderTransientError(message, **kwargs)
    if event.error_code == "NotFound":
        return ResourceNotFound(message, **kwargs)
    return ProviderFatalError(message, **kwargs)
