"""
Main entry point for running the event detector webhook server.
"""

import uvicorn

from event_detector.settings import Settings


def main():
    """Run the webhook server."""
    settings = Settings()
    uvicorn.run(
        "event_detector.main:app",
        host=settings.get_host(),
        port=settings.get_port(),
        log_level=settings.get_log_level().lower(),
        reload=settings.dev_mode(),
    )


if __name__ == "__main__":
    main()
