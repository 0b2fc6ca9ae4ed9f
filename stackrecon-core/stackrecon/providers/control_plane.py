"""
An in-process emulation of the external control plane the shipped resource providers talk to. It keeps a
record (the resource model) per physical resource, an index of idempotency tokens, and optionally persists
both into a JSON document so that subsequent runs of the CLI see the same resources.
"""

import copy
import logging
import os
import threading
from typing import Any, Callable, Optional

from stackrecon import config
from stackrecon.constants import CONTROL_PLANE_STATE_FILE
from stackrecon.engine.errors import ProviderFatalError, ResourceNotFound
from stackrecon.utils.json import FileMappedDocument

LOG = logging.getLogger(__name__)

KEY_RESOURCES = "resources"
KEY_TOKENS = "tokens"


class LocalControlPlane:
    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._mutex = threading.RLock()
        self._document = FileMappedDocument(path) if path else {}
        self._document.setdefault(KEY_RESOURCES, {})
        self._document.setdefault(KEY_TOKENS, {})

    @property
    def _resources(self) -> dict[str, dict[str, dict]]:
        return self._document[KEY_RESOURCES]

    @property
    def _tokens(self) -> dict[str, list[str]]:
        return self._document[KEY_TOKENS]

    def _save(self):
        if isinstance(self._document, FileMappedDocument):
            self._document.save()

    def create(
        self, resource_type: str, token: str, build: Callable[[], tuple[str, dict]]
    ) -> dict:
        """
        Create a resource, unless a resource was already created with the same idempotency token, in which
        case the existing resource model is returned.

        :param build: returns the physical id and the model of the new resource
        """
        with self._mutex:
            if token and (existing := self._tokens.get(token)):
                existing_type, existing_id = existing
                if existing_id in self._resources.get(existing_type, {}):
                    LOG.debug("Idempotent create of %s %s", resource_type, existing_id)
                    return copy.deepcopy(self._resources[existing_type][existing_id])

            physical_id, model = build()
            records = self._resources.setdefault(resource_type, {})
            if physical_id in records:
                raise ProviderFatalError(f"{resource_type} {physical_id} already exists")
            records[physical_id] = model
            if token:
                self._tokens[token] = [resource_type, physical_id]
            self._save()
            LOG.debug("Created %s %s", resource_type, physical_id)
            return copy.deepcopy(model)

    def get(self, resource_type: str, physical_id: str) -> dict:
        with self._mutex:
            model = self._resources.get(resource_type, {}).get(physical_id)
            if model is None:
                raise ResourceNotFound(f"{resource_type} {physical_id} does not exist")
            return copy.deepcopy(model)

    def exists(self, resource_type: str, value: str, attribute: Optional[str] = None) -> bool:
        with self._mutex:
            records = self._resources.get(resource_type, {})
            if attribute is None:
                return value in records
            return any(model.get(attribute) == value for model in records.values())

    def put(self, resource_type: str, physical_id: str, model: dict) -> dict:
        with self._mutex:
            if physical_id not in self._resources.get(resource_type, {}):
                raise ResourceNotFound(f"{resource_type} {physical_id} does not exist")
            self._resources[resource_type][physical_id] = model
            self._save()
            return copy.deepcopy(model)

    def delete(self, resource_type: str, physical_id: str):
        with self._mutex:
            if physical_id not in self._resources.get(resource_type, {}):
                raise ResourceNotFound(f"{resource_type} {physical_id} does not exist")

            if dependents := self.find_references(physical_id, exclude=(resource_type, physical_id)):
                raise ProviderFatalError(
                    f"DependencyViolation: {resource_type} {physical_id} is still referenced by {dependents}"
                )

            del self._resources[resource_type][physical_id]
            for token, (_, token_id) in list(self._tokens.items()):
                if token_id == physical_id:
                    del self._tokens[token]
            self._save()
            LOG.debug("Deleted %s %s", resource_type, physical_id)

    def find_references(self, physical_id: str, exclude: tuple[str, str] = None) -> list[str]:
        """Physical ids of all resources whose model references the given physical id"""
        referencing = []
        for resource_type, records in self._resources.items():
            for other_id, model in records.items():
                if (resource_type, other_id) == exclude:
                    continue
                if _references(model, physical_id):
                    referencing.append(other_id)
        return sorted(referencing)

    def list(self, resource_type: Optional[str] = None) -> dict[str, dict]:
        with self._mutex:
            if resource_type:
                return copy.deepcopy(self._resources.get(resource_type, {}))
            return {
                physical_id: model
                for records in copy.deepcopy(self._resources).values()
                for physical_id, model in records.items()
            }

    def count(self) -> int:
        with self._mutex:
            return sum(len(records) for records in self._resources.values())

    def reset(self):
        with self._mutex:
            self._resources.clear()
            self._tokens.clear()
            self._save()


def _references(value: Any, physical_id: str) -> bool:
    if isinstance(value, str):
        return value == physical_id
    if isinstance(value, dict):
        return any(_references(v, physical_id) for v in value.values())
    if isinstance(value, list):
        return any(_references(v, physical_id) for v in value)
    return False


_control_plane: Optional[LocalControlPlane] = None
_control_plane_lock = threading.Lock()


def get_control_plane() -> LocalControlPlane:
    """
    Return the control plane shared by all shipped providers, persisted under ``STATE_DIR`` unless
    ``PERSIST_CONTROL_PLANE`` is disabled.
    """
    global _control_plane
    with _control_plane_lock:
        if _control_plane is None:
            path = None
            if config.PERSIST_CONTROL_PLANE:
                path = os.path.join(config.STATE_DIR, CONTROL_PLANE_STATE_FILE)
            _control_plane = LocalControlPlane(path)
        return _control_plane


def set_control_plane(control_plane: Optional[LocalControlPlane]):
    global _control_plane
    with _control_plane_lock:
        _control_plane = control_plane
