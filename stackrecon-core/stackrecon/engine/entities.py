import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from stackrecon.engine.types import RawTemplate
from stackrecon.utils.strings import long_uid


class StackStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"
    ROLLBACK_IN_PROGRESS = "ROLLBACK_IN_PROGRESS"
    ROLLED_BACK = "ROLLED_BACK"
    DELETE_IN_PROGRESS = "DELETE_IN_PROGRESS"
    DELETE_COMPLETE = "DELETE_COMPLETE"
    DELETE_FAILED = "DELETE_FAILED"

    @property
    def is_failure(self) -> bool:
        return self in (StackStatus.FAILED, StackStatus.ROLLED_BACK, StackStatus.DELETE_FAILED)


class ResourceStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"
    DELETE_IN_PROGRESS = "DELETE_IN_PROGRESS"
    DELETE_COMPLETE = "DELETE_COMPLETE"
    DELETE_FAILED = "DELETE_FAILED"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True)
class Parameter:
    name: str
    type: str
    value: Any
    no_echo: bool = False

    @property
    def display_value(self) -> Any:
        return "****" if self.no_echo else self.value


@dataclass
class Resource:
    """A realized resource declaration. Excluded (condition-gated) resources never become a Resource."""

    logical_id: str
    type: str
    # properties with parameters, mappings and conditions already resolved, references
    # to other resources are kept as intrinsic function nodes
    properties: dict[str, Any]
    depends_on: list[str] = field(default_factory=list)
    condition: Optional[str] = None
    index: int = 0
    # "Retain" keeps the physical resource when it is removed from the stack
    deletion_policy: str = "Delete"


@dataclass
class Output:
    name: str
    value: Any
    description: Optional[str] = None
    condition: Optional[str] = None
    export_name: Any = None


@dataclass
class Stack:
    stack_name: str
    stack_id: str
    template: RawTemplate
    region: str
    account_id: str
    parameters: dict[str, Parameter] = field(default_factory=dict)
    mappings: dict[str, dict] = field(default_factory=dict)
    conditions: dict[str, bool] = field(default_factory=dict)
    resources: dict[str, Resource] = field(default_factory=dict)
    excluded_resources: set[str] = field(default_factory=set)
    outputs: dict[str, Output] = field(default_factory=dict)
    # logical id -> logical ids of the resources it depends on
    dependencies: dict[str, set[str]] = field(default_factory=dict)

    @property
    def declaration_order(self) -> list[str]:
        return sorted(self.resources, key=lambda logical_id: self.resources[logical_id].index)

    @property
    def parameter_values(self) -> dict[str, Any]:
        return {name: param.value for name, param in self.parameters.items()}

    def dependents_of(self, logical_id: str) -> set[str]:
        return {name for name, deps in self.dependencies.items() if logical_id in deps}


@dataclass
class StackEvent:
    stack_name: str
    logical_resource_id: str
    resource_type: str
    status: Any
    physical_resource_id: Optional[str] = None
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))
    event_id: str = field(default_factory=long_uid)

    def serialize(self) -> dict:
        return {
            "EventId": self.event_id,
            "StackName": self.stack_name,
            "LogicalResourceId": self.logical_resource_id,
            "PhysicalResourceId": self.physical_resource_id,
            "ResourceType": self.resource_type,
            "ResourceStatus": getattr(self.status, "value", self.status),
            "ResourceStatusReason": self.reason,
            "Timestamp": self.timestamp.isoformat(),
        }


class ResourceGate:
    """Completion gate of a single resource, set once by the scheduler and awaited by readers."""

    def __init__(self):
        self._event = threading.Event()
        self.status: ResourceStatus = ResourceStatus.PENDING

    def open(self, status: ResourceStatus):
        self.status = status
        self._event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)
