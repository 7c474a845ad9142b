"""
Pytest configuration and shared fixtures.
"""

import pytest
import pytest_asyncio

from sunspec_controller.common.config import EngineSettings, PoolSettings
from sunspec_controller.common.models import load_model_index_file
from sunspec_controller.services.device import ConnectionPool, DeviceService, MemoryAddressCache

from tests.fakes import FakeNetwork, standard_inverter_map


@pytest.fixture
def model_index():
    """Bundled SunSpec model index"""
    return load_model_index_file()


@pytest.fixture
def network():
    """Fake Modbus network with one SunSpec inverter at 10.0.0.1 unit 1"""
    net = FakeNetwork()
    net.add("10.0.0.1", 502, {1: standard_inverter_map()})
    return net


@pytest.fixture
def settings():
    """Engine settings without pool cool-down"""
    return EngineSettings(pool=PoolSettings(cooldown_s=0.0, timeout_s=1.0))


@pytest.fixture
def pool(network):
    return ConnectionPool(session_factory=network.session_factory, cooldown=0.0)


@pytest.fixture
def cache():
    return MemoryAddressCache()


@pytest_asyncio.fixture
async def device_service(settings, model_index, cache, network):
    service = DeviceService(
        settings,
        models=model_index,
        cache=cache,
        session_factory=network.session_factory,
    )
    await service.start()
    yield service
    await service.stop()
