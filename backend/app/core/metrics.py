# Centralized Prometheus metrics for sandbox lifecycle and rewriting.
# Labels stay low-cardinality: sandbox ids never become label values.

from prometheus_client import Counter, Gauge

# Tokens handed out by /_sandbox/get.
SANDBOXES_ISSUED_TOTAL = Counter(
    "sandboxes_issued_total",
    "Sandbox tokens issued",
)

# Requests refused because the Sandbox header named an unknown token.
SANDBOX_REJECTED_TOTAL = Counter(
    "sandbox_rejected_requests_total",
    "Requests rejected for an invalid sandbox token",
)

# Index references rewritten, split by namespace and carrier.
INDEX_REWRITES_TOTAL = Counter(
    "index_rewrites_total",
    "Index references rewritten",
    ["scope", "carrier"],  # scope: sandbox|global, carrier: path|query|body
)

# Per-index deletes issued during teardown.
SANDBOX_INDEX_DELETES_TOTAL = Counter(
    "sandbox_index_deletes_total",
    "Physical sandbox indices deleted at teardown",
    ["outcome"],  # outcome: success|fail
)

SANDBOXES_RELOADED_TOTAL = Counter(
    "sandboxes_reloaded_total",
    "Sandboxes restored from the backing store",
)

ACTIVE_SANDBOXES = Gauge(
    "active_sandboxes",
    "Sandboxes currently held by the registry",
)


def record_rewrites(scope: str, carrier: str, count: int) -> None:
    if count:
        INDEX_REWRITES_TOTAL.labels(scope=scope, carrier=carrier).inc(count)


def record_delete(success: bool) -> None:
    SANDBOX_INDEX_DELETES_TOTAL.labels(outcome="success" if success else "fail").inc()
