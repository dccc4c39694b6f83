import logging
import os


def configure_logging() -> None:
    """Configure logging defaults for the back office."""
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # Stripe's client logs every request at INFO.
    logging.getLogger("stripe").setLevel(max(logging.getLevelName(level), logging.WARNING))
