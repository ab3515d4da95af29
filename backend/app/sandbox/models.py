"""
The Sandbox record: a tenant token and the logical indices it has touched.
"""

from threading import Lock


class Sandbox:
    __slots__ = ("_id", "_indices", "_lock")

    def __init__(self, sandbox_id: str):
        self._id = sandbox_id
        self._indices: set[str] = set()
        self._lock = Lock()

    @property
    def identifier(self) -> str:
        return self._id

    def touch(self, index_name: str) -> None:
        with self._lock:
            self._indices.add(index_name)

    @property
    def indices(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._indices)

    def __repr__(self) -> str:
        return f"Sandbox(id={self._id!r}, indices={len(self._indices)})"
