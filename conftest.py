import sys

import pytest
from loguru import logger

OPEN_RULES = """rules_version = '2';
service cloud.firestore {
  match /databases/{database}/documents {
    match /{document=**} {
      allow read, write: if true;
    }
  }
}
"""


@pytest.fixture
def open_rules() -> str:
    return OPEN_RULES


@pytest.fixture(autouse=True)
def _reset_logger():
    """Keeps loguru sinks from leaking between tests."""
    logger.remove()
    logger.add(sys.stderr, level="WARNING")
    yield
    logger.remove()
