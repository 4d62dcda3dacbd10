import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from models.enums import LogLevel
from utils.logger import configure_logger


@pytest.fixture(autouse=True)
def plain_logger():
    """Uncolored INFO output so tests can match console text."""
    configure_logger(LogLevel.INFO, use_colors=False)
    yield
    configure_logger(LogLevel.INFO, use_colors=False)
