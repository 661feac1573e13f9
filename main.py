"""Main entry point for the Community Events API."""

from community_events.config import get_settings


def main():
    """Serve the API with uvicorn using the configured host and port."""
    import uvicorn

    settings = get_settings()
    # log_config=None keeps the logging set up by community_events.main
    uvicorn.run(
        "community_events.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=None,
    )


if __name__ == "__main__":
    main()
