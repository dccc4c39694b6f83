from fastapi import APIRouter, Depends

from ....application.services.admin_auth_service import AdminAuthService
from ....core.dependencies import get_admin_auth_service
from ....domain.models import User
from ...api.dependencies import require_admin_user
from ...api.schemas.admin import AdminLoginRequest

router = APIRouter(prefix="/api/admin", tags=["Admin Authentication"])


@router.post("/login")
def admin_login(
    payload: AdminLoginRequest,
    admin_auth: AdminAuthService = Depends(get_admin_auth_service),
) -> dict:
    token = admin_auth.authenticate(payload.email, payload.password)
    return {"access_token": token, "token_type": "bearer"}


@router.get("/me")
def admin_me(current_user: User = Depends(require_admin_user)) -> dict:
    return {
        "id": current_user.id,
        "email": current_user.email,
        "is_active": current_user.is_active,
        "created_at": current_user.created_at.replace(microsecond=0).isoformat(),
    }
