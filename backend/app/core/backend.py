"""
HTTP client for the search backend the gateway fronts.

Everything goes through one requests.Session. Transport failures and 5xx
answers on the sandbox bookkeeping calls surface as StorageUnavailable.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional
from urllib.parse import quote

import requests

from app.core.config import Settings, settings as default_settings
from app.core.logging import get_structured_logger

logger = get_structured_logger("search_backend")

# Hop-by-hop and recomputed headers never forwarded in either direction.
_SKIP_HEADERS = {
    "host",
    "content-length",
    "connection",
    "keep-alive",
    "transfer-encoding",
    "te",
    "trailer",
    "upgrade",
    "proxy-authorization",
    "proxy-authenticate",
    "content-encoding",
}


class StorageUnavailable(Exception):
    """Raised when the search backend cannot be reached or answers with a server error."""


@dataclass
class BackendResponse:
    status_code: int
    content: bytes
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def media_type(self) -> Optional[str]:
        return self.headers.get("content-type")


def filter_headers(headers: Mapping[str, str], drop: tuple[str, ...] = ()) -> dict[str, str]:
    skipped = _SKIP_HEADERS | {name.lower() for name in drop}
    return {key: value for key, value in headers.items() if key.lower() not in skipped}


class SearchBackendClient:
    def __init__(self, config: Optional[Settings] = None, session: Optional[requests.Session] = None):
        self.config = config or default_settings
        self.base_url = self.config.SEARCH_BACKEND_URL
        self.timeout = self.config.SEARCH_BACKEND_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def forward(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
        body: bytes = b"",
    ) -> BackendResponse:
        # path arrives percent-encoded and is sent as is.
        try:
            resp = self.session.request(
                method,
                self._url(path),
                params=dict(params or {}),
                headers=dict(headers or {}),
                data=body or None,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise StorageUnavailable(f"Search backend unreachable: {exc}") from exc
        return BackendResponse(
            status_code=resp.status_code,
            content=resp.content,
            headers={k.lower(): v for k, v in filter_headers(resp.headers).items()},
        )

    def delete_index(self, physical_name: str) -> None:
        try:
            resp = self.session.delete(self._url(quote(physical_name, safe="")), timeout=self.timeout)
        except requests.RequestException as exc:
            raise StorageUnavailable(f"Failed to delete index {physical_name}") from exc
        if resp.status_code == 404:
            logger.info("backend.delete_index.missing", extra={"index": physical_name})
            return
        if resp.status_code >= 400:
            raise StorageUnavailable(
                f"Failed to delete index {physical_name}: status {resp.status_code}"
            )

    def record_sandbox(self, sandbox_id: str) -> None:
        index = self.config.SANDBOX_REGISTRY_INDEX
        body = json.dumps({"sandboxId": sandbox_id}, separators=(",", ":"))
        try:
            resp = self.session.post(
                self._url(f"{quote(index, safe='')}/_doc"),
                data=body,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise StorageUnavailable(f"Failed to persist sandbox {sandbox_id}") from exc
        if resp.status_code >= 400:
            raise StorageUnavailable(
                f"Failed to persist sandbox {sandbox_id}: status {resp.status_code}"
            )

    def list_sandbox_ids(self, timeout: Optional[float] = None) -> list[str]:
        """
        Read persisted sandbox ids from the registry index.

        Ids come from the `sandboxId` field of each hit's `_source`.
        """
        index = self.config.SANDBOX_REGISTRY_INDEX
        try:
            resp = self.session.post(
                self._url(f"{quote(index, safe='')}/_search"),
                data=json.dumps({"size": 10000, "_source": ["sandboxId"]}),
                headers={"Content-Type": "application/json"},
                timeout=timeout or self.config.SANDBOX_RELOAD_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            raise StorageUnavailable("Failed to read persisted sandboxes") from exc
        if resp.status_code == 404:
            return []
        if resp.status_code >= 400:
            raise StorageUnavailable(
                f"Failed to read persisted sandboxes: status {resp.status_code}"
            )
        try:
            payload: dict[str, Any] = resp.json()
        except ValueError as exc:
            raise StorageUnavailable("Persisted sandbox listing is not JSON") from exc
        hits = (payload.get("hits") or {}).get("hits") or []
        ids = []
        for hit in hits:
            source = hit.get("_source") or {}
            sandbox_id = source.get("sandboxId")
            if isinstance(sandbox_id, str) and sandbox_id:
                ids.append(sandbox_id)
        return ids

    def close(self) -> None:
        self.session.close()
