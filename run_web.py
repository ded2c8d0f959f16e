#!/usr/bin/env python3
"""
Main entry point for the Live Match Sync authoritative server.

This script launches the Flask-based web server. Rules and logging are
configured from the environment (see ``livematch.utils.config``).
"""
import logging

from livematch.ui.web_app import run_web_app
from livematch.utils import SyncConfig

if __name__ == "__main__":
    config = SyncConfig.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_web_app(config=config)
