"""ASGI entrypoint: ``uvicorn backoffice.main:app`` or the ``backoffice`` console script."""

import os

import uvicorn

from .core.app_factory import create_application

app = create_application()


def run() -> None:
    uvicorn.run(
        "backoffice.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


__all__ = ("app", "run")
