from pathlib import Path
import logging
import sys

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ucan_inspector.config import DecoderSettings  # noqa: E402


@pytest.fixture
def settings():
    return DecoderSettings()


@pytest.fixture
def decode_logger(caplog):
    caplog.set_level(logging.DEBUG, logger="ucan_inspector.tests")
    return logging.getLogger("ucan_inspector.tests")
