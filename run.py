"""Entry point for the tabletop turn service."""
import logging

from dotenv import load_dotenv

load_dotenv()

import uvicorn

from tabletop.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("tabletop.main:app", host=settings.HOST, port=settings.PORT)
