"Sandboxing: per-tenant index namespaces, the registry that owns them, and request rewriting."

from .constants import SANDBOX_HEADER  # noqa: F401
from .errors import MalformedIndexReference, StorageUnavailable, UnknownTenant  # noqa: F401
from .interceptor import InterceptedRequest, RequestInterceptor  # noqa: F401
from .models import Sandbox  # noqa: F401
from .registry import SandboxRegistry, TokenValidation  # noqa: F401
