"""
config.py – runtime settings for the mock test server, read from the environment.
"""

import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

DB_PATH    = os.environ.get("MOCKTEST_DB_PATH", os.path.join(BASE_DIR, "mocktest.db"))
UPLOAD_DIR = os.environ.get("MOCKTEST_UPLOAD_DIR", os.path.join(BASE_DIR, "uploads"))

# 50 MB, same ceiling the upload form advertises
MAX_PDF_BYTES = int(os.environ.get("MAX_PDF_BYTES", 50 * 1024 * 1024))

# Attempts started without a user fall back to the seeded guest account.
DEFAULT_USER_ID = int(os.environ.get("DEFAULT_USER_ID", 1))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
PORT      = int(os.environ.get("PORT", 8000))
