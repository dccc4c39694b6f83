from fastapi import Depends, Request

from .container import ApplicationContainer


def get_container(request: Request) -> ApplicationContainer:
    container = getattr(request.app.state, "container", None)
    if not container:
        raise RuntimeError("Application container not initialised.")
    return container


def get_settings(container: ApplicationContainer = Depends(get_container)):
    return container.settings


def get_persistence_gateway(container: ApplicationContainer = Depends(get_container)):
    return container.persistence


def get_sync_service(container: ApplicationContainer = Depends(get_container)):
    return container.sync_service


def get_admin_auth_service(container: ApplicationContainer = Depends(get_container)):
    return container.admin_auth_service
