"""
Request rewriting glue between the HTTP layer and the sandbox registry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from app.core.metrics import SANDBOX_REJECTED_TOTAL, record_rewrites
from app.sandbox.constants import BODY_INDEX_KEY, INDEX_PARAM, SANDBOX_HEADER
from app.sandbox.errors import UnknownTenant
from app.sandbox.registry import SandboxRegistry
from app.sandbox.rewriter import rewrite_body_index_fields, rewrite_path_indices

logger = logging.getLogger(__name__)

_BODY_MARKER = f'"{BODY_INDEX_KEY}"'.encode("utf-8")


@dataclass
class InterceptedRequest:
    sandbox_id: Optional[str]
    params: dict[str, str]
    body: bytes
    touched: list[str] = field(default_factory=list)
    error: Optional[UnknownTenant] = None
    path_index: Optional[str] = None

    @property
    def rejected(self) -> bool:
        return self.error is not None


def _header_value(headers: Mapping[str, str], name: str) -> Optional[str]:
    getter = getattr(headers, "get", None)
    value = getter(name) if getter else None
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                value = candidate
                break
    if value is None:
        return None
    return value.strip()


def _merge(touched: list[str], names: list[str]) -> None:
    for name in names:
        if name not in touched:
            touched.append(name)


class RequestInterceptor:
    """
    Validate the sandbox token, rewrite index references, record touches.

    An unknown token yields a rejected InterceptedRequest with the original
    params and body; nothing is rewritten and nothing is recorded.
    """

    def __init__(
        self,
        registry: SandboxRegistry,
        header_name: str = SANDBOX_HEADER,
        index_param: str = INDEX_PARAM,
    ):
        self.registry = registry
        self.header_name = header_name
        self.index_param = index_param

    def intercept(
        self,
        headers: Mapping[str, str],
        params: Mapping[str, str],
        body: bytes = b"",
        path_index: Optional[str] = None,
    ) -> InterceptedRequest:
        params = dict(params)
        original_params, original_body = dict(params), body
        original_path_index = path_index
        token = _header_value(headers, self.header_name)
        validation = self.registry.validate(token)
        if not validation.ok:
            SANDBOX_REJECTED_TOTAL.inc()
            logger.info("sandbox.rejected", extra={"sandbox_id": token})
            return InterceptedRequest(
                sandbox_id=None,
                params=params,
                body=body,
                error=validation.error,
                path_index=path_index,
            )

        sandbox_id = validation.sandbox_id
        scope = "global" if sandbox_id is None else "sandbox"
        touched: list[str] = []

        if path_index is not None:
            path_result = rewrite_path_indices(path_index, sandbox_id)
            path_index = path_result.value
            _merge(touched, path_result.touched)
            record_rewrites(scope, "path", path_result.rewritten)

        if self.index_param in params:
            param_result = rewrite_path_indices(params[self.index_param], sandbox_id)
            params[self.index_param] = param_result.value
            _merge(touched, param_result.touched)
            record_rewrites(scope, "query", param_result.rewritten)

        if body and _BODY_MARKER in body:
            try:
                text = body.decode("utf-8")
            except UnicodeDecodeError:
                logger.debug("sandbox.body.undecodable")
            else:
                body_result = rewrite_body_index_fields(text, sandbox_id)
                if body_result.rewritten:
                    body = body_result.value.encode("utf-8")
                _merge(touched, body_result.touched)
                record_rewrites(scope, "body", body_result.rewritten)

        if sandbox_id is not None and touched:
            try:
                self.registry.touch_indices(sandbox_id, touched)
            except UnknownTenant as exc:
                # Torn down between validation and recording.
                SANDBOX_REJECTED_TOTAL.inc()
                return InterceptedRequest(
                    sandbox_id=None,
                    params=original_params,
                    body=original_body,
                    error=exc,
                    path_index=original_path_index,
                )

        return InterceptedRequest(
            sandbox_id=sandbox_id,
            params=params,
            body=body,
            touched=touched,
            path_index=path_index,
        )
