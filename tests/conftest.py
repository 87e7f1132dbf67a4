"""
Shared pytest configuration
"""
import os
import sys

import pytest

# Add src and the tests directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
sys.path.insert(0, os.path.dirname(__file__))

from sql_repair_agent.config import reset_config
from sql_repair_agent.utils import clear_context, get_metrics_collector


@pytest.fixture(autouse=True)
def isolated_state():
    """Fresh metrics, configuration and logging context for every test"""
    collector = get_metrics_collector()
    collector.reset()
    collector.enable()
    reset_config()
    clear_context()
    yield
    clear_context()
    reset_config()
