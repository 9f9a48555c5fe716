from chatrelay.logging_config import setup_logging
from chatrelay.routes import create_app
from chatrelay.settings import settings

setup_logging()
app = create_app()


def run() -> None:
    import uvicorn

    # log_config=None keeps the handlers installed by setup_logging().
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment.lower() == "development",
        log_config=None,
    )


if __name__ == "__main__":
    run()
