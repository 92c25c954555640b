"""Run the web app with uvicorn: ``python -m msi_fic``."""

from __future__ import annotations

import logging
import os

import uvicorn


def main() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "msi_fic.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level=level.lower(),
        proxy_headers=True,
    )


if __name__ == "__main__":
    main()
