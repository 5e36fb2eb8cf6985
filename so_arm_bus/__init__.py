from so_arm_bus.bus_controller import (
    BusCloseError,
    BusConnectionError,
    BusError,
    NotConnectedError,
    ServoBusController,
)
from so_arm_bus.config import BusSettings, load_config

__version__ = "0.1.0"
