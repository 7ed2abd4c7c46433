import uvicorn

from scrape_runner.logging_setup import configure_logging
from scrape_runner.settings import get_settings


def main() -> None:
    settings = get_settings()
    configure_logging(settings.is_debug)
    # log_config=None keeps uvicorn on our JSON handler; requests are logged by
    # the app's own middleware.
    uvicorn.run(
        "scrape_runner.api:app",
        host="0.0.0.0",
        port=settings.port,
        reload=False,
        log_config=None,
        access_log=False,
    )


if __name__ == "__main__":
    main()
