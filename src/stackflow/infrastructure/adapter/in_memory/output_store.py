import threading
from typing import Any

import msgspec

from stackflow.application.port import OutputStore


class InMemoryOutputStore(OutputStore):
    def __init__(self):
        self._store: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: bytes):
        """
        Store a value with the given key.

        :param key: The key to store the value under
        :type key: str
        :param value: The value to store
        :type value: bytes
        """
        with self._lock:
            self._store[key] = value

    def get(self, key: str) -> bytes:
        """
        Retrieve a value by key.

        :param key: The key to retrieve the value for
        :type key: str
        :returns: The stored value
        :rtype: bytes
        :raises KeyError: If the key is not found
        """
        with self._lock:
            return self._store[key]

    def get_execution_outputs(self, execution_id: str) -> dict[str, Any]:
        """
        Retrieve every output document stored for an execution.

        :param execution_id: The execution identifier
        :type execution_id: str
        :returns: Mapping of stack name to decoded document
        :rtype: dict[str, Any]
        :raises KeyError: If nothing is stored for the execution
        """
        prefix = f"{execution_id}/"
        with self._lock:
            items = [(k, v) for k, v in self._store.items() if k.startswith(prefix)]
        if not items:
            raise KeyError(f"No outputs found for execution '{execution_id}'")
        return {k[len(prefix) :].split("/", 1)[0]: msgspec.json.decode(v) for k, v in items}

    def delete_execution_outputs(self, execution_id: str) -> bool:
        prefix = f"{execution_id}/"
        with self._lock:
            keys = [k for k in self._store if k.startswith(prefix)]
            for k in keys:
                del self._store[k]
        return bool(keys)

    def list_execution_ids(self) -> list[str]:
        with self._lock:
            return sorted({k.split("/", 1)[0] for k in self._store})
