"""Run the service with uvicorn: python -m grocery"""

import os

import uvicorn

from .config import Settings
from .log import configure_logging


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(
        "grocery.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", 8000)),
        log_config=None,
    )


if __name__ == "__main__":
    main()
