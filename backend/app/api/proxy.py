"""
Catch-all route forwarding rewritten requests to the search backend.

The upstream path is rebuilt from the raw, still percent-encoded request
path. Only the segment naming indices is decoded, rewritten and re-encoded;
every other segment (document ids in particular) goes out byte for byte.
"""

from typing import Optional
from urllib.parse import quote, unquote

from fastapi import APIRouter, Depends, Request, Response
from starlette.concurrency import run_in_threadpool

from app.core.backend import SearchBackendClient, filter_headers
from app.core.config import Settings
from app.sandbox.dependencies import (
    ensure_sandboxes_loaded,
    get_backend,
    get_interceptor,
    get_settings,
)
from app.sandbox.interceptor import RequestInterceptor


router = APIRouter(tags=["proxy"])

FORWARDED_METHODS = ["GET", "POST", "PUT", "DELETE", "HEAD", "PATCH"]

# API routes starting with "_" that take an index list in a later segment,
# keyed by their two leading segments.
API_INDEX_SEGMENTS = {
    ("_cat", "indices"): 2,
    ("_cat", "count"): 2,
    ("_cat", "shards"): 2,
    ("_cat", "segments"): 2,
    ("_cat", "recovery"): 2,
    ("_cluster", "health"): 2,
    ("_cluster", "state"): 3,
}

# Characters kept literal when the rewritten index list goes back into the path.
_INDEX_PATH_SAFE = ",:*"


def split_index_path(raw_path: str) -> tuple[list[str], Optional[int]]:
    """
    Split an encoded path into segments and locate the index segment.

    `logs,metrics/_search` names its indices first; `_cat/indices/logs`
    names them third. Other paths starting with `_` carry no index.
    """
    segments = raw_path.lstrip("/").split("/")
    head = segments[0]
    if not head:
        return segments, None
    if not head.startswith("_"):
        return segments, 0
    position = API_INDEX_SEGMENTS.get(tuple(segments[:2]))
    if position is None or len(segments) <= position or not segments[position]:
        return segments, None
    return segments, position


def request_raw_path(request: Request, path: str) -> str:
    raw = request.scope.get("raw_path")
    if not raw:
        return quote(path)
    # Some servers hand over the query string along with the path.
    return raw.decode("utf-8", "replace").split("?", 1)[0]


def _forward(
    interceptor: RequestInterceptor,
    backend: SearchBackendClient,
    config: Settings,
    method: str,
    raw_path: str,
    query: dict[str, str],
    headers: dict[str, str],
    body: bytes,
) -> Response:
    segments, position = split_index_path(raw_path)
    path_index = unquote(segments[position]) if position is not None else None
    params = dict(query)

    if config.SANDBOX_ENABLED:
        intercepted = interceptor.intercept(headers, params, body, path_index=path_index)
        if intercepted.rejected:
            raise intercepted.error
        params, body, path_index = intercepted.params, intercepted.body, intercepted.path_index

    if position is not None:
        segments[position] = quote(path_index, safe=_INDEX_PATH_SAFE)

    upstream = backend.forward(
        method,
        "/".join(segments),
        params=params,
        headers=filter_headers(headers, drop=(interceptor.header_name,)),
        body=body,
    )
    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        media_type=upstream.media_type,
    )


@router.api_route(
    "/{path:path}",
    methods=FORWARDED_METHODS,
    dependencies=[Depends(ensure_sandboxes_loaded)],
    include_in_schema=False,
)
async def forward_request(
    path: str,
    request: Request,
    config: Settings = Depends(get_settings),
    interceptor: RequestInterceptor = Depends(get_interceptor),
    backend: SearchBackendClient = Depends(get_backend),
) -> Response:
    body = await request.body()
    return await run_in_threadpool(
        _forward,
        interceptor,
        backend,
        config,
        request.method,
        request_raw_path(request, path),
        dict(request.query_params),
        dict(request.headers),
        body,
    )
