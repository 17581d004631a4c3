"""
Key/value backends for the client-side session record.

Every backend exposes the same three calls:
    read(keys) -> dict of the keys that are present
    write(values) -> writes all given keys in one step
    remove(keys) -> drops the keys, missing keys are ignored
"""

from typing import Dict, Iterable


class MemoryRecordStorage:
    """Process-local storage, used for ephemeral sessions and in tests."""

    def __init__(self, initial=None):
        self._data: Dict[str, str] = dict(initial or {})

    def read(self, keys: Iterable[str]) -> Dict[str, str]:
        return {k: self._data[k] for k in keys if k in self._data}

    def write(self, values: Dict[str, str]) -> None:
        self._data.update({k: str(v) for k, v in values.items()})

    def remove(self, keys: Iterable[str]) -> None:
        for k in keys:
            self._data.pop(k, None)

