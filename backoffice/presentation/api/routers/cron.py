"""Endpoints invoked by the external scheduler."""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from ....application.services.sync_service import SubscriptionMembershipSyncService
from ....core.dependencies import get_sync_service
from ...api.dependencies import require_cron_secret

router = APIRouter(prefix="/api/cron", tags=["Scheduled Jobs"])


@router.post("/process-scheduled-cancellations", dependencies=[Depends(require_cron_secret)])
def process_scheduled_cancellations(
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    return sync_service.process_scheduled_cancellations()
