"""
Process-wide sandbox registry.

One instance is built per application and handed to the request layer;
nothing in here is module-global. A single lock guards the mapping and is
held by teardown for its whole delete-and-clear pass, so no token can be
issued or index recorded while sandboxes are being torn down.
"""

from __future__ import annotations

import base64
import secrets
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Iterable, Optional, Union

from app.core.logging import get_structured_logger
from app.core.metrics import (
    ACTIVE_SANDBOXES,
    SANDBOXES_ISSUED_TOTAL,
    SANDBOXES_RELOADED_TOTAL,
    record_delete,
)
from app.core.tracing import trace_span
from app.sandbox.errors import UnknownTenant
from app.sandbox.models import Sandbox
from app.sandbox.rewriter import physical_index_name

logger = get_structured_logger("sandbox.registry")

SandboxSource = Union[Iterable[str], Callable[[], Iterable[str]]]
IndexDeleter = Callable[[str], object]

_TOKEN_BYTES = 16


def generate_sandbox_id() -> str:
    raw = secrets.token_bytes(_TOKEN_BYTES)
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii").lower()


@dataclass(frozen=True)
class TokenValidation:
    """
    Outcome of checking a request's sandbox token.

    sandbox_id is None for untagged (global) requests; error is set when a
    token was supplied but is not registered.
    """

    sandbox_id: Optional[str]
    error: Optional[UnknownTenant] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SandboxRegistry:
    def __init__(self, persist_enabled: bool = False):
        self._persist_enabled = persist_enabled
        self._sandboxes: dict[str, Sandbox] = {}
        self._lock = Lock()
        self._load_lock = Lock()
        self._loaded = False

    @property
    def persist_enabled(self) -> bool:
        return self._persist_enabled

    @property
    def loaded(self) -> bool:
        return self._loaded

    def __len__(self) -> int:
        with self._lock:
            return len(self._sandboxes)

    def _publish_size(self) -> None:
        ACTIVE_SANDBOXES.set(len(self._sandboxes))

    def issue_token(self) -> str:
        with self._lock:
            sandbox_id = generate_sandbox_id()
            while sandbox_id in self._sandboxes:
                sandbox_id = generate_sandbox_id()
            self._sandboxes[sandbox_id] = Sandbox(sandbox_id)
            self._publish_size()
        SANDBOXES_ISSUED_TOTAL.inc()
        logger.info("sandbox.issued", extra={"sandbox_id": sandbox_id})
        return sandbox_id

    def contains(self, token) -> bool:
        if not isinstance(token, str) or not token:
            return False
        with self._lock:
            return token in self._sandboxes

    def validate(self, token: Optional[str]) -> TokenValidation:
        if token is None:
            return TokenValidation(sandbox_id=None)
        if not self.contains(token):
            return TokenValidation(sandbox_id=None, error=UnknownTenant(token))
        return TokenValidation(sandbox_id=token)

    def touch_index(self, token: str, index_name: str) -> None:
        self.touch_indices(token, (index_name,))

    def touch_indices(self, token: str, index_names: Iterable[str]) -> None:
        """
        Record indices against a sandbox in one critical section.

        Raises UnknownTenant when the token is not (or no longer) registered.
        """
        with self._lock:
            sandbox = self._sandboxes.get(token) if isinstance(token, str) else None
            if sandbox is None:
                raise UnknownTenant(token)
            for index_name in index_names:
                sandbox.touch(index_name)

    def indices_of(self, token: str) -> frozenset[str]:
        with self._lock:
            sandbox = self._sandboxes.get(token)
            if sandbox is None:
                raise UnknownTenant(token)
            return sandbox.indices

    def sandbox_ids(self) -> list[str]:
        with self._lock:
            return list(self._sandboxes)

    def reload(self, source: SandboxSource) -> int:
        """
        Import previously persisted sandbox ids with empty index sets.

        Any failure while reading the source leaves the registry as it was
        and reloads nothing. Known ids are skipped, so repeated calls are safe.
        """
        with trace_span("sandbox.reload") as span:
            try:
                ids = list(source() if callable(source) else source)
            except Exception:
                logger.exception("sandbox.reload.failed")
                span["reloaded"] = 0
                return 0
            added = 0
            with self._lock:
                for sandbox_id in ids:
                    if not isinstance(sandbox_id, str) or not sandbox_id:
                        continue
                    if sandbox_id in self._sandboxes:
                        continue
                    self._sandboxes[sandbox_id] = Sandbox(sandbox_id)
                    added += 1
                self._publish_size()
            SANDBOXES_RELOADED_TOTAL.inc(added)
            span["reloaded"] = added
        return added

    def load_once(self, source: SandboxSource) -> int:
        if self._loaded:
            return 0
        with self._load_lock:
            if self._loaded:
                return 0
            added = self.reload(source)
            self._loaded = True
        return added

    def teardown(self, deleter: IndexDeleter) -> int:
        """
        Drop every sandbox, deleting its physical indices unless persistence is on.

        Deletes are best effort: a failing delete is logged and the pass goes on.
        Returns the number of deletes issued.
        """
        issued = 0
        with trace_span("sandbox.teardown", persist=self._persist_enabled) as span:
            with self._lock:
                if self._persist_enabled:
                    if self._sandboxes:
                        logger.warning(
                            "sandbox.teardown.persisted",
                            extra={
                                "sandboxes": len(self._sandboxes),
                                "note": "indices stay on the backend; reload restores ids only",
                            },
                        )
                else:
                    for sandbox_id, sandbox in self._sandboxes.items():
                        for index_name in sorted(sandbox.indices):
                            physical = physical_index_name(index_name, sandbox_id)
                            issued += 1
                            try:
                                deleter(physical)
                            except Exception:
                                record_delete(False)
                                logger.exception(
                                    "sandbox.teardown.delete_failed",
                                    extra={"sandbox_id": sandbox_id, "index": physical},
                                )
                            else:
                                record_delete(True)
                self._sandboxes.clear()
                self._publish_size()
            span["deletes"] = issued
        return issued

    def start(self) -> None:
        pass

    def stop(self, deleter: IndexDeleter) -> int:
        return self.teardown(deleter)
