import pytest

from netmonitor.limits import reset_network_limits


@pytest.fixture(autouse=True)
def default_limits():
    reset_network_limits()
    yield
    reset_network_limits()
