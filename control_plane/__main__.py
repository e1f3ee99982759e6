"""
Entry point for running the voice bot control plane.

Usage:
    python -m control_plane

Starts the FastAPI server on CONTROL_HOST:CONTROL_PORT (default 0.0.0.0:8000).
"""
import os

import uvicorn

from logging_setup import setup_logging
from voice_bot.config import get_config, load_env_files

if __name__ == "__main__":
    load_env_files()

    setup_logging(level=os.environ.get("LOG_LEVEL", "INFO"), use_json=True)

    config = get_config()
    uvicorn.run(
        "control_plane.server:app",
        host=config.control_host,
        port=config.control_port,
        log_level="info"
    )
