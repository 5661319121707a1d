import json
import logging
import posixpath
from contextlib import closing
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlencode

from backends.base import BackendError, DirEntry, StateBackend

logger = logging.getLogger(__name__)

STATE_FILE_EXT = ".tfstate"
SEARCH_PATH = "/search"


class SearchError(Exception):
    """Base class for search failures"""


class DirectoryReadError(SearchError):
    """The searched path could not be listed"""


class StateParseError(SearchError):
    """The state file could not be opened or decoded"""


@dataclass
class SearchResult:
    outputs: dict[str, Any] = field(default_factory=dict)
    terraform_version: str = ""
    # child path -> /search locator
    subdirs: dict[str, str] = field(default_factory=dict)


@dataclass
class StateOutput:
    """The value of a single terraform output, left as decoded JSON"""

    value: Any = None


@dataclass
class StateFile:
    """A terraform state file. Only the outputs and version are kept."""

    outputs: dict[str, StateOutput] = field(default_factory=dict)
    terraform_version: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "StateFile":
        if not isinstance(data, dict):
            raise StateParseError("state file is not a JSON object")

        raw_outputs = data.get("outputs")
        if raw_outputs is None:
            raw_outputs = {}
        if not isinstance(raw_outputs, dict):
            raise StateParseError("'outputs' is not a JSON object")

        outputs = {}
        for name, output in raw_outputs.items():
            if not isinstance(output, dict):
                raise StateParseError(f"output '{name}' is not a JSON object")
            outputs[name] = StateOutput(value=output.get("value"))

        version = data.get("terraform_version")
        if version is None:
            version = ""
        if not isinstance(version, str):
            raise StateParseError("'terraform_version' is not a string")

        return cls(outputs=outputs, terraform_version=version)


def execute_search(state_backend: StateBackend, spath: Optional[str], backend: str) -> SearchResult:
    """
    Search one directory of a state backend.

    Lists ``spath``, links every subdirectory back to the search page for
    ``backend`` and, when the directory holds a ``.tfstate`` file, reads its
    outputs and terraform version.

    Raises:
        DirectoryReadError: ``spath`` could not be listed.
    """
    spath = spath or "."
    sr = SearchResult()

    try:
        entries = state_backend.list_dir(spath)
    except BackendError as e:
        raise DirectoryReadError(f"could not read path contents: {e}") from e

    sr.subdirs = subdirs(entries, spath, backend)

    state_file = find_state_file(entries)
    if not state_file:
        return sr

    try:
        populate_search_results(sr, posixpath.join(spath, state_file), state_backend)
    except StateParseError as e:
        # a broken state file reads the same as no state file to callers
        logger.warning("ignoring state file in %s:%s: %s", backend, spath, e)

    return sr


def populate_search_results(sr: SearchResult, state_file: str, state_backend: StateBackend) -> None:
    try:
        f = state_backend.open_file(state_file)
    except BackendError as e:
        raise StateParseError(f"could not fetch tf state: {e}") from e

    try:
        with closing(f):
            tfdata = StateFile.from_dict(json.load(f))
    except (ValueError, OSError) as e:
        raise StateParseError(f"could not parse tf state: {e}") from e

    sr.terraform_version = tfdata.terraform_version
    sr.outputs = {name: output.value for name, output in tfdata.outputs.items()}


def find_state_file(entries: list[DirEntry]) -> str:
    """Return the name of the first state file in listing order, or ''"""
    for e in entries:
        if not e.is_dir and e.name.endswith(STATE_FILE_EXT):
            return e.name
    return ""


def search_url(backend: str, spath: str) -> str:
    return f"{SEARCH_PATH}?{urlencode([('backend', backend), ('spath', spath)])}"


def subdirs(entries: list[DirEntry], spath: str, backend: str) -> dict[str, str]:
    keepers = {}
    for e in entries:
        if e.is_dir:
            key = posixpath.normpath(posixpath.join(spath, e.name))
            keepers[key] = search_url(backend, key)
    return keepers
