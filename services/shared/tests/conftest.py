"""Pytest setup for the shared package tests."""

import os
import sys
from pathlib import Path

SERVICES_DIR = Path(__file__).resolve().parents[2]

if str(SERVICES_DIR) not in sys.path:
    sys.path.insert(0, str(SERVICES_DIR))

# Publishers and consumers under test get mocked clients; never reach a real Redis.
os.environ["REDIS_URL"] = ""
