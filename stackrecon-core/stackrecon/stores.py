"""
Persisted state of the deployed stacks. Every stack is stored as a JSON document
``<STATE_DIR>/<stack name>.stack.json``, holding per logical resource the type, physical id, attributes,
resolved and declared properties and dependencies, plus the parameters, outputs, exports, status and
template of the last run.
"""

import copy
import logging
import os
import re
import threading
from typing import Optional

from stackrecon import config
from stackrecon.constants import STACK_STATE_FILE_SUFFIX
from stackrecon.engine.entities import StackStatus
from stackrecon.engine.errors import StackNotFoundError
from stackrecon.utils.json import FileMappedDocument

LOG = logging.getLogger(__name__)

STACK_NAME_REGEX = re.compile(r"^[a-zA-Z][-a-zA-Z0-9]{0,127}$")


class StackState:
    """The persisted document of a single stack. Only the scheduler thread of a deployment writes to it."""

    def __init__(self, document: dict, stack_name: str):
        self.document = document
        self.stack_name = stack_name
        self.document.setdefault("StackName", stack_name)
        self.document.setdefault("Resources", {})
        self.document.setdefault("Outputs", {})
        self.document.setdefault("Exports", {})
        self.document.setdefault("Parameters", {})

    @property
    def exists(self) -> bool:
        return bool(self.document.get("StackId"))

    @property
    def stack_id(self) -> Optional[str]:
        return self.document.get("StackId")

    @property
    def status(self) -> Optional[StackStatus]:
        status = self.document.get("StackStatus")
        return StackStatus(status) if status else None

    @property
    def resources(self) -> dict[str, dict]:
        return self.document["Resources"]

    @property
    def outputs(self) -> dict:
        return self.document["Outputs"]

    @property
    def exports(self) -> dict:
        return self.document["Exports"]

    @property
    def template(self) -> Optional[dict]:
        return self.document.get("Template")

    def snapshot_resources(self) -> dict[str, dict]:
        return copy.deepcopy(self.resources)

    def set_status(self, status: StackStatus, reason: Optional[str] = None):
        self.document["StackStatus"] = status.value
        self.document["StackStatusReason"] = reason
        self.save()

    def set_resource(self, logical_id: str, record: dict):
        self.resources[logical_id] = record
        self.save()

    def remove_resource(self, logical_id: str):
        self.resources.pop(logical_id, None)
        self.save()

    def save(self):
        if isinstance(self.document, FileMappedDocument):
            self.document.save()

    def delete(self):
        if isinstance(self.document, FileMappedDocument):
            self.document.delete()
        else:
            self.document.clear()


class StackStore:
    """
    Stores the stack documents in ``state_dir``. Without a directory the documents are only kept in memory,
    which is what embedded usage and the tests rely on.
    """

    def __init__(self, state_dir: Optional[str] = None, persistent: bool = True):
        self.state_dir = state_dir or config.STATE_DIR
        self.persistent = persistent
        self._documents: dict[str, dict] = {}
        self._mutex = threading.RLock()

    def _path(self, stack_name: str) -> str:
        return os.path.join(self.state_dir, f"{stack_name}{STACK_STATE_FILE_SUFFIX}")

    def get(self, stack_name: str) -> StackState:
        """Return the state of the given stack, which is empty if the stack was never deployed"""
        if not STACK_NAME_REGEX.match(stack_name or ""):
            raise ValueError(
                f"Invalid stack name {stack_name!r}: must start with a letter and contain only "
                f"alphanumeric characters and hyphens"
            )
        with self._mutex:
            if stack_name not in self._documents:
                self._documents[stack_name] = (
                    FileMappedDocument(self._path(stack_name), mode=0o600)
                    if self.persistent
                    else {}
                )
            return StackState(self._documents[stack_name], stack_name)

    def require(self, stack_name: str) -> StackState:
        state = self.get(stack_name)
        if not state.exists or state.status == StackStatus.DELETE_COMPLETE:
            raise StackNotFoundError(stack_name)
        return state

    def list_stacks(self) -> list[str]:
        names = set(self._documents)
        if self.persistent and os.path.isdir(self.state_dir):
            names.update(
                name[: -len(STACK_STATE_FILE_SUFFIX)]
                for name in os.listdir(self.state_dir)
                if name.endswith(STACK_STATE_FILE_SUFFIX)
            )
        return sorted(name for name in names if self.get(name).exists)

    def delete(self, stack_name: str):
        with self._mutex:
            self.get(stack_name).delete()
            self._documents.pop(stack_name, None)

    @property
    def exports(self) -> dict[str, dict]:
        """Exports of all stacks: export name -> {"ExportingStackName", "Value"}"""
        exports = {}
        for stack_name in self.list_stacks():
            state = self.get(stack_name)
            if state.status == StackStatus.DELETE_COMPLETE:
                continue
            for export_name, value in state.exports.items():
                if export_name in exports:
                    LOG.warning(
                        "Found duplicate export name %s in stacks: %s %s",
                        export_name,
                        exports[export_name]["ExportingStackName"],
                        stack_name,
                    )
                exports[export_name] = {"ExportingStackName": stack_name, "Value": value}
        return exports
