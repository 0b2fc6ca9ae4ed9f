import json
import logging
import os
import tempfile
from datetime import date, datetime
from enum import Enum
from typing import Union

from .strings import to_str

LOG = logging.getLogger(__name__)


class CustomEncoder(json.JSONEncoder):
    """JSON encoder for stack documents: enums (statuses), datetimes (events), sets (dependencies), bytes."""

    def default(self, o):
        if isinstance(o, Enum):
            return o.value
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        if isinstance(o, (set, frozenset)):
            return sorted(o)
        if isinstance(o, bytes):
            return to_str(o, errors="replace")
        return super().default(o)


class FileMappedDocument(dict):
    """A dictionary backed by a JSON file.

    Existing contents are loaded on creation, ``load()`` re-reads the file and ``save()`` replaces it
    atomically, so readers never observe a partially written document.
    """

    def __init__(self, path: Union[str, os.PathLike], mode: int = 0o664):
        super().__init__()
        self.path = os.fspath(path)
        self.mode = mode
        self.load()

    def load(self) -> None:
        try:
            with open(self.path, "r") as fd:
                contents = json.load(fd)
        except FileNotFoundError:
            return
        self.clear()
        self.update(contents)

    def save(self) -> None:
        folder = os.path.dirname(self.path) or "."
        os.makedirs(folder, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=folder, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as tmp_file:
                json.dump(self, tmp_file, cls=CustomEncoder, indent=2)
            os.chmod(tmp_path, self.mode)
            os.replace(tmp_path, self.path)
        except BaseException:
            os.remove(tmp_path)
            raise
        LOG.debug("Saved document %s", self.path)

    def delete(self) -> None:
        self.clear()
        if os.path.isfile(self.path):
            os.remove(self.path)
