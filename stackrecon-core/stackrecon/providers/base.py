import copy
import logging
from typing import Optional

from stackrecon.engine.errors import ResourceNotFound
from stackrecon.providers.control_plane import LocalControlPlane, get_control_plane
from stackrecon.resource_provider import (
    OperationStatus,
    ProgressEvent,
    ResourceProvider,
    ResourceRequest,
)
from stackrecon.utils.strings import get_random_hex, short_uid

LOG = logging.getLogger(__name__)


def generate_default_name(stack_name: str, logical_resource_id: str, max_length: int = 255) -> str:
    """Generate a physical name in the form ``<stack>-<logical id>-<random suffix>``"""
    random_id_part = short_uid().upper()
    resource_id_part = logical_resource_id[:24]
    stack_name_part = stack_name[: max_length - 3 - len(resource_id_part) - len(random_id_part)]
    return f"{stack_name_part}-{resource_id_part}-{random_id_part}"


def property_name(json_pointer: str) -> str:
    return json_pointer.removeprefix("/properties/").split("/")[0]


class ControlPlaneResourceProvider(ResourceProvider[dict]):
    """
    Base class of the providers shipped with stackrecon, which manage their resources in the
    ``LocalControlPlane``. Subclasses declare their ``TYPE`` and ``SCHEMA``, and customize the generated
    physical id and read-only attributes.
    """

    TYPE: str = ""
    ID_PREFIX: str = ""
    # property name -> (resource type, attribute or None for the primary identifier) it must refer to
    REFERENCES: dict[str, tuple[str, Optional[str]]] = {}

    def __init__(self, control_plane: Optional[LocalControlPlane] = None):
        self._control_plane = control_plane

    @property
    def control_plane(self) -> LocalControlPlane:
        return self._control_plane or get_control_plane()

    @property
    def primary_identifier(self) -> str:
        return property_name(self.SCHEMA["primaryIdentifier"][0])

    def generate_id(self, request: ResourceRequest[dict]) -> str:
        return f"{self.ID_PREFIX}-{get_random_hex(17)}"

    def attributes(self, request: ResourceRequest[dict], model: dict) -> dict:
        """Read-only attributes of a new resource, returned by Fn::GetAtt"""
        return {}

    def validate(self, request: ResourceRequest[dict]) -> Optional[ProgressEvent[dict]]:
        properties = request.desired_state
        for required in self.SCHEMA.get("required", []):
            if properties.get(required) in (None, "", [], {}):
                return ProgressEvent(
                    status=OperationStatus.FAILED,
                    resource_model={},
                    message=f"Property {required} is required for {self.TYPE}",
                    error_code="InvalidRequest",
                )
        for prop, (resource_type, attribute) in self.REFERENCES.items():
            value = properties.get(prop)
            if isinstance(value, str) and not self.control_plane.exists(resource_type, value, attribute):
                return ProgressEvent(
                    status=OperationStatus.FAILED,
                    resource_model={},
                    message=f"The {prop} '{value}' does not exist",
                    error_code="InvalidParameterValue",
                )
        return None

    def build_model(self, request: ResourceRequest[dict]) -> tuple[str, dict]:
        model = copy.deepcopy(request.desired_state)
        physical_id = self.generate_id(request)
        model[self.primary_identifier] = physical_id
        model.update(self.attributes(request, model))
        return physical_id, model

    def create(self, request: ResourceRequest[dict]) -> ProgressEvent[dict]:
        if failed := self.validate(request):
            return failed
        model = self.control_plane.create(
            self.TYPE, request.idempotency_token, lambda: self.build_model(request)
        )
        request.logger.debug("Created %s %s", self.TYPE, model[self.primary_identifier])
        return ProgressEvent(status=OperationStatus.SUCCESS, resource_model=model)

    def read(self, request: ResourceRequest[dict]) -> ProgressEvent[dict]:
        model = self.control_plane.get(self.TYPE, request.physical_resource_id)
        return ProgressEvent(status=OperationStatus.SUCCESS, resource_model=model)

    def update(self, request: ResourceRequest[dict]) -> ProgressEvent[dict]:
        current = self.control_plane.get(self.TYPE, request.physical_resource_id)
        previous = request.previous_state or {}
        for pointer in self.SCHEMA.get("createOnlyProperties", []):
            name = property_name(pointer)
            if request.desired_state.get(name) != previous.get(name):
                return ProgressEvent(
                    status=OperationStatus.FAILED,
                    resource_model={},
                    message=f"Property {name} of {self.TYPE} cannot be updated",
                    error_code="NotUpdatable",
                )
        if failed := self.validate(request):
            return failed

        model = copy.deepcopy(request.desired_state)
        read_only = self.SCHEMA.get("readOnlyProperties", []) + self.SCHEMA["primaryIdentifier"]
        for pointer in read_only:
            name = property_name(pointer)
            if name in current:
                model[name] = current[name]
        self.on_update(current, model)
        model = self.control_plane.put(self.TYPE, request.physical_resource_id, model)
        return ProgressEvent(status=OperationStatus.SUCCESS, resource_model=model)

    def on_update(self, current: dict, model: dict):
        pass

    def delete(self, request: ResourceRequest[dict]) -> ProgressEvent[dict]:
        try:
            self.control_plane.delete(self.TYPE, request.physical_resource_id)
        except ResourceNotFound:
            request.logger.debug("%s %s already deleted", self.TYPE, request.physical_resource_id)
        return ProgressEvent(status=OperationStatus.SUCCESS, resource_model={})
