import logging
import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ...application.services.admin_auth_service import AdminAuthService
from ...core.config import Settings
from ...core.dependencies import get_admin_auth_service, get_settings

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def require_admin_user(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    admin_service: AdminAuthService = Depends(get_admin_auth_service),
):
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token.")
    return admin_service.get_current_admin(credentials.credentials)


def require_cron_secret(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> None:
    if not settings.cron_secret:
        logger.error("CRON_SECRET is not configured; refusing scheduled job call")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Cron secret not configured.")
    supplied = credentials.credentials if credentials is not None else ""
    if not secrets.compare_digest(supplied.encode(), settings.cron_secret.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
