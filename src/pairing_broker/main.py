"""Command-line entrypoint serving the API with uvicorn."""

import uvicorn

from pairing_broker.config import Settings


def main() -> None:
    """Run the ASGI app on the configured host and port."""
    settings = Settings()
    uvicorn.run(
        "pairing_broker.api.asgi:app",
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    main()
