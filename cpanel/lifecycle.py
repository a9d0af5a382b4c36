"""
Process-wide serving state

The flag starts out True when the module is imported and is flipped once by
the application lifespan on shutdown. Request handlers only read it.
"""
import structlog

logger = structlog.get_logger(__name__)

_accepting_requests = True


def is_accepting_requests() -> bool:
    return _accepting_requests


def stop_accepting_requests() -> None:
    global _accepting_requests
    if _accepting_requests:
        logger.info("stopped_accepting_requests")
    _accepting_requests = False


def start_accepting_requests() -> None:
    global _accepting_requests
    _accepting_requests = True
