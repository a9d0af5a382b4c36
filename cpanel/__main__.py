"""
Run the control panel: python -m cpanel
"""
import uvicorn

from .config import get_settings


def main():
    settings = get_settings()
    uvicorn.run(
        "cpanel.main:create_app",
        factory=True,
        host=settings.listen_address,
        port=settings.listen_port,
        log_level=settings.log_level.lower(),
        access_log=False,
    )


if __name__ == "__main__":
    main()
