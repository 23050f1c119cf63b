"""``python -m zenith``: run the API under uvicorn."""

import uvicorn

from zenith.core.config import get_settings
from zenith.main import create_app


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host="0.0.0.0",
        port=settings.port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
