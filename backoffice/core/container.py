from dataclasses import dataclass
from typing import Optional

from ..application.services.admin_auth_service import AdminAuthService
from ..application.services.sync_service import SubscriptionMembershipSyncService
from ..domain.ports.clock import Clock
from ..domain.ports.payment_gateway import PaymentGateway
from ..domain.ports.persistence import PersistenceGateway
from .config import Settings


@dataclass(slots=True)
class ApplicationContainer:
    """Dependency registry shared across the FastAPI application lifecycle."""

    settings: Settings
    persistence: PersistenceGateway
    clock: Clock
    payment_gateway: Optional[PaymentGateway]
    sync_service: SubscriptionMembershipSyncService
    admin_auth_service: AdminAuthService
