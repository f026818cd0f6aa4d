"""
Shared fixtures for the zigctl test suite.
"""

import pytest

from zigctl.config import Config, reset_config
from zigctl.devices.models import ClusterType, DeviceRecord, Endpoint, NodeType
from zigctl.gateway import Gateway
from zigctl.network.memory import InMemoryNetwork, SimulatedDevice, simulated_light, simulated_plug

LIGHT = "0x0017880104e45517"
PLUG = "0x00158d0001234567"
SWITCH_PLUG = "0x00158d0009abcdef"


def onoff_only_light(ieee_address: str) -> SimulatedDevice:
    """A bulb whose model promises level and colour but only serves On/Off."""
    record = DeviceRecord(
        ieee_address=ieee_address,
        network_address=0x5E6F,
        node_type=NodeType.ROUTER,
        model_id="LCT015",
        manufacturer_name="Philips",
        interview_completed=True,
        endpoints=[Endpoint(11, [int(ClusterType.BASIC), int(ClusterType.ON_OFF)], [])],
    )
    return SimulatedDevice(record=record, attributes={"genOnOff": {"onOff": 1}})


@pytest.fixture(autouse=True)
def clean_config():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config(tmp_path):
    return Config(data_dir=tmp_path, request_timeout=0.2, start_timeout=0.5)


@pytest.fixture
def network():
    net = InMemoryNetwork()
    net.add_device(simulated_light(LIGHT))
    net.add_device(simulated_plug(PLUG))
    net.add_device(simulated_plug(SWITCH_PLUG, model_id="S26R2ZB", manufacturer_name="SONOFF", metering=False))
    return net


@pytest.fixture
def gateway(network, config):
    return Gateway(network, config)
