"""
Cadence — Entry Point.

Single entry point: `python main.py` runs one activation pass.
"""

import logging

from cadence.config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from cadence.app import main

if __name__ == "__main__":
    main()
