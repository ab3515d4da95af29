"""
Constants for sandbox naming and request carriers.
"""

# Header carrying the tenant token issued by /_sandbox/get.
SANDBOX_HEADER = "Sandbox"

# Request parameter holding a comma-separated list of index names.
INDEX_PARAM = "index"

SANDBOX_INDEX_PREFIX = "sandbox_index_"
GLOBAL_INDEX_PREFIX = "global_index_"

# Logical names meaning "all indices"; never rewritten.
SENTINEL_INDICES = frozenset({"*", "_all"})

CLUSTER_SEPARATOR = ":"

# Body field key whose string value names an index.
BODY_INDEX_KEY = "_index"

INVALID_SANDBOX_MESSAGE = "Invalid Sandbox Id provided"
SANDBOX_DISABLED_MESSAGE = "Sandboxing not enabled on this node"
