import os

import uvicorn

from constants import HOST, PORT, ROOMS_CONFIG
from logging_config import get_logger, setup_logging

# Logging must be configured before the app module builds its RoomManager
setup_logging(log_level=os.getenv("LOG_LEVEL", "DEBUG"), log_file=os.getenv("LOG_FILE", None))
logger = get_logger(__name__)


def main():
    logger.info(f"Starting PAMBAZO realtime gateway on {HOST}:{PORT} (rooms: {ROOMS_CONFIG or 'built-in'})")
    # The room state lives in this process only, so never run more than one worker
    uvicorn.run("app:app", host=HOST, port=PORT, workers=1, log_config=None)


if __name__ == "__main__":
    main()
