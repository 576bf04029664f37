"""Run the proxy with uvicorn: ``python -m api``."""

import uvicorn

from config.settings import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run("api.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
