import json
import logging
from typing import Any, Optional, TextIO

from .base import StateBackend
from .local import LocalBackend
from .s3 import S3Backend

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the backend configuration cannot be loaded"""


class BackendList:
    """
    Named state backends to look in for Terraform state.

    Names are returned in the order they were added. Adding a name twice is
    allowed, but lookups only ever see the first one.
    """

    def __init__(self):
        self._backends: list[tuple[str, StateBackend]] = []

    def add_state(self, name: str, state_backend: StateBackend) -> None:
        self._backends.append((name, state_backend))

    def get_state(self, name: str) -> Optional[StateBackend]:
        for backend_name, state_backend in self._backends:
            if backend_name == name:
                return state_backend
        return None

    def names(self) -> list[str]:
        return [name for name, _ in self._backends]

    def __len__(self) -> int:
        return len(self._backends)


def backend_list_from_json(fp: TextIO) -> BackendList:
    """
    Build a BackendList from a JSON document such as:

        [
          {"name": "prod", "type": "s3",
           "connection_info": {"bucket_name": "tf-prod", "role_arn": "arn:aws:iam::1:role/r"}},
          {"name": "scratch", "type": "local",
           "connection_info": {"path": "./states"}}
        ]
    """
    try:
        configs = json.load(fp)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Could not decode JSON: {e}")

    if not isinstance(configs, list):
        raise ConfigError("Backend configuration must be a JSON array.")

    backends = BackendList()
    for conf in configs:
        if not isinstance(conf, dict):
            raise ConfigError("Each backend configuration must be a JSON object.")
        name = conf.get("name", "")
        try:
            state_backend = init_backend_state(conf)
        except ValueError as e:
            raise ConfigError(f"Could not init backend state for backend '{name}': {e}")

        logger.info("Registered %s backend '%s'", conf.get("type"), name)
        backends.add_state(name, state_backend)

    return backends


def init_backend_state(conf: dict[str, Any]) -> StateBackend:
    info = conf.get("connection_info") or {}
    if not isinstance(info, dict):
        raise ConfigError("connection_info must be a JSON object.")

    backend_type = conf.get("type")
    if backend_type == "s3":
        if not info.get("bucket_name"):
            raise ConfigError("connection_info.bucket_name is required.")
        return S3Backend(
            bucket_name=info["bucket_name"],
            profile_name=info.get("profile_name"),
            region_name=info.get("region_name"),
            role_arn=info.get("role_arn"),
        )
    elif backend_type == "local":
        if not info.get("path"):
            raise ConfigError("connection_info.path is required.")
        return LocalBackend(info["path"])
    else:
        raise ConfigError(f"Backend type '{backend_type}' not yet implemented.")
