"""
Index name rewriting for sandboxed and global requests.

Every logical index name a request references is mapped onto a physical name:

    sandbox_index_<sandbox_id>_<name>   when the request carries a sandbox token
    global_index_<name>                 otherwise

`*` and `_all` are left alone, and a `cluster:` qualifier is carried over
verbatim. These functions are pure; recording touched indices against the
registry is the caller's job.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from app.sandbox.constants import (
    BODY_INDEX_KEY,
    CLUSTER_SEPARATOR,
    GLOBAL_INDEX_PREFIX,
    SANDBOX_INDEX_PREFIX,
    SENTINEL_INDICES,
)
from app.sandbox.errors import MalformedIndexReference

logger = logging.getLogger(__name__)

# A JSON string literal. Backslash escapes are consumed as pairs, so an
# escaped quote never ends the literal.
_STRING_LITERAL = re.compile(r'"(?:[^"\\]|\\.)*"', re.DOTALL)
_KEY_VALUE_SEPARATOR = re.compile(r"\s*:\s*")

_BODY_MARKER = f'"{BODY_INDEX_KEY}"'


@dataclass
class RewriteResult:
    value: str
    touched: list[str] = field(default_factory=list)
    rewritten: int = 0


def physical_index_name(logical_name: str, sandbox_id: Optional[str]) -> str:
    if sandbox_id is None:
        return f"{GLOBAL_INDEX_PREFIX}{logical_name}"
    return f"{SANDBOX_INDEX_PREFIX}{sandbox_id}_{logical_name}"


def split_cluster_qualifier(reference: str) -> tuple[Optional[str], str]:
    """
    Split `cluster:name` at the first colon.

    Raises MalformedIndexReference for an empty reference or when either
    side of the colon is empty.
    """
    if not reference:
        raise MalformedIndexReference(reference)
    if CLUSTER_SEPARATOR not in reference:
        return None, reference
    cluster, _, logical = reference.partition(CLUSTER_SEPARATOR)
    if not cluster or not logical:
        raise MalformedIndexReference(reference)
    return cluster, logical


def rewrite_index_name(reference: str, sandbox_id: Optional[str]) -> tuple[str, Optional[str]]:
    """
    Rewrite one index reference.

    Returns the rewritten reference and the logical name it touched, or None
    when nothing was rewritten (sentinels and malformed references).
    """
    try:
        cluster, logical = split_cluster_qualifier(reference)
    except MalformedIndexReference as exc:
        logger.debug("sandbox.rewrite.malformed", extra={"reference": exc.reference})
        return reference, None
    if logical in SENTINEL_INDICES:
        return reference, None
    rewritten = physical_index_name(logical, sandbox_id)
    if cluster is not None:
        rewritten = f"{cluster}{CLUSTER_SEPARATOR}{rewritten}"
    return rewritten, logical


def _remember(touched: list[str], seen: set[str], logical: str) -> None:
    if logical not in seen:
        seen.add(logical)
        touched.append(logical)


def rewrite_path_indices(index_list: str, sandbox_id: Optional[str]) -> RewriteResult:
    """
    Rewrite a comma-separated index list, keeping element order.

    Touched names are only reported for sandboxed requests; global indices
    belong to no sandbox.
    """
    result = RewriteResult(value=index_list)
    if not index_list:
        return result
    seen: set[str] = set()
    parts = []
    for reference in index_list.split(","):
        rewritten, logical = rewrite_index_name(reference, sandbox_id)
        parts.append(rewritten)
        if logical is None:
            continue
        result.rewritten += 1
        if sandbox_id is not None:
            _remember(result.touched, seen, logical)
    result.value = ",".join(parts)
    return result


def rewrite_body_index_fields(body: str, sandbox_id: Optional[str]) -> RewriteResult:
    """
    Rewrite every `"_index": "<name>"` pair in a JSON or NDJSON body.

    The body is scanned string literal by string literal instead of being
    parsed, so newline-delimited bulk bodies work and an `_index` marker that
    only appears inside another string value is never matched. Values that
    contain escape sequences are left unchanged.
    """
    result = RewriteResult(value=body)
    if not body or _BODY_MARKER not in body:
        return result

    seen: set[str] = set()
    pieces: list[str] = []
    cursor = 0
    pos = 0
    while True:
        key = _STRING_LITERAL.search(body, pos)
        if key is None:
            break
        pos = key.end()
        if key.group(0) != _BODY_MARKER:
            continue
        separator = _KEY_VALUE_SEPARATOR.match(body, pos)
        if separator is None:
            continue
        value = _STRING_LITERAL.match(body, separator.end())
        if value is None:
            continue
        pos = value.end()
        logical = value.group(0)[1:-1]
        if "\\" in logical:
            logger.debug("sandbox.rewrite.malformed", extra={"reference": logical})
            continue
        rewritten, touched = rewrite_index_name(logical, sandbox_id)
        if touched is None:
            continue
        pieces.append(body[cursor:value.start() + 1])
        pieces.append(rewritten)
        cursor = value.end() - 1
        result.rewritten += 1
        if sandbox_id is not None:
            _remember(result.touched, seen, touched)

    if result.rewritten:
        pieces.append(body[cursor:])
        result.value = "".join(pieces)
    return result
