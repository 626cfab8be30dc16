import sys
from unittest.mock import MagicMock

import pytest

# Mock config so importing modules never reads config/config.ini or keys.env
mock_config = MagicMock()
mock_config.LOGGER_DEBUG = False
mock_config.LOG_DIR = "logs"
mock_config.get_config.return_value = {}
mock_config.get_env.return_value = None

mock_loader_module = MagicMock()
mock_loader_module.config = mock_config
mock_loader_module.Config = MagicMock(return_value=mock_config)

sys.modules['nft_dashboard.config.loader'] = mock_loader_module

from tests.helpers import FakeClock  # noqa: E402


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def normalizer(clock):
    from nft_dashboard.utils.timestamps import TimestampNormalizer
    return TimestampNormalizer(clock=clock)


@pytest.fixture
def logger():
    return MagicMock()
