"""
Database bootstrap runner
Usage: python run_bootstrap.py

Applies the same idempotent schema steps the API runs on startup.
"""
import logging
import sys

from patient_api.bootstrap import initialize_database
from patient_api.database import engine

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)

if __name__ == "__main__":
    try:
        changes = initialize_database(engine)
    except Exception as e:
        logger.error(f"❌ Bootstrap failed: {e}")
        sys.exit(1)

    if changes:
        for change in changes:
            logger.info(f"  - {change}")
    else:
        logger.info("Schema already up to date")
