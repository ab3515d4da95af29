from typing import Any, Optional

from fastapi import APIRouter, Depends, Request

from app.core.backend import SearchBackendClient, StorageUnavailable
from app.core.config import Settings
from app.core.logging import get_structured_logger
from app.sandbox.constants import SANDBOX_DISABLED_MESSAGE
from app.sandbox.dependencies import (
    ensure_sandboxes_loaded,
    get_backend,
    get_registry,
    get_settings,
)
from app.sandbox.registry import SandboxRegistry


router = APIRouter(tags=["sandbox"])

logger = get_structured_logger("sandbox.api")


@router.get("/_sandbox/get")
def issue_sandbox(
    request: Request,
    config: Settings = Depends(get_settings),
    registry: SandboxRegistry = Depends(get_registry),
    backend: SearchBackendClient = Depends(get_backend),
) -> dict[str, Any]:
    if not config.SANDBOX_ENABLED:
        return {"Message": SANDBOX_DISABLED_MESSAGE}
    sandbox_id = registry.issue_token()
    request.state.sandbox_id = sandbox_id
    if config.SANDBOX_PERSIST:
        try:
            backend.record_sandbox(sandbox_id)
        except StorageUnavailable:
            # The token still works for this process lifetime.
            logger.exception("sandbox.persist.failed", extra={"sandbox_id": sandbox_id})
    return {"sandboxId": sandbox_id}


@router.get("/_sandbox/current", dependencies=[Depends(ensure_sandboxes_loaded)])
def current_sandbox(
    request: Request,
    config: Settings = Depends(get_settings),
    registry: SandboxRegistry = Depends(get_registry),
) -> dict[str, Any]:
    if not config.SANDBOX_ENABLED:
        return {"Message": SANDBOX_DISABLED_MESSAGE}
    token: Optional[str] = getattr(request.state, "sandbox_id", None)
    validation = registry.validate(token)
    if validation.error is not None:
        raise validation.error
    return {"sandboxId": validation.sandbox_id}
