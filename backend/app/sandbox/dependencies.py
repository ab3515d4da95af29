"""
FastAPI dependency helpers for the sandbox registry and request interception.
"""

from fastapi import Request

from app.core.backend import SearchBackendClient
from app.core.config import Settings
from app.sandbox.interceptor import RequestInterceptor
from app.sandbox.registry import SandboxRegistry


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> SandboxRegistry:
    return request.app.state.registry


def get_backend(request: Request) -> SearchBackendClient:
    return request.app.state.backend


def get_interceptor(request: Request) -> RequestInterceptor:
    return request.app.state.interceptor


def ensure_sandboxes_loaded(request: Request) -> None:
    """
    Reload persisted sandbox ids once, on the first request after startup.
    """
    config = get_settings(request)
    if not (config.SANDBOX_ENABLED and config.SANDBOX_PERSIST):
        return
    registry = get_registry(request)
    if registry.loaded:
        return
    backend = get_backend(request)
    registry.load_once(
        lambda: backend.list_sandbox_ids(timeout=config.SANDBOX_RELOAD_TIMEOUT_SECONDS)
    )
