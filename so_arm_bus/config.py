import copy
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

import dotenv

from so_arm_bus.feetech.servo_defs import DEFAULT_BAUDRATE, SO_ARM_MOTOR_IDS
from so_arm_bus.utils.logging import get_logger

log = get_logger(__name__)

CONFIG_FILE = Path.home() / ".config" / "so_arm_bus" / "config.json"

DEFAULT_CONFIG = {
    "device": "/dev/ttyUSB0",
    "baudrate": DEFAULT_BAUDRATE,
    "read_timeout": 2.0,
    "inter_command_delay": 0.02,
    "inter_transaction_delay": 0.05,
    "motor_ids": list(SO_ARM_MOTOR_IDS),
    "verify_responses": False,
}

# env var -> (config key, parser)
ENV_OVERRIDES = {
    "SO_ARM_DEVICE": ("device", str),
    "SO_ARM_BAUDRATE": ("baudrate", int),
    "SO_ARM_READ_TIMEOUT": ("read_timeout", float),
    "SO_ARM_INTER_COMMAND_DELAY": ("inter_command_delay", float),
    "SO_ARM_INTER_TRANSACTION_DELAY": ("inter_transaction_delay", float),
    "SO_ARM_MOTOR_IDS": ("motor_ids", lambda v: [int(i.strip()) for i in v.split(",")]),
    "SO_ARM_VERIFY_RESPONSES": ("verify_responses", lambda v: v.strip().lower() in ("1", "true", "yes", "on")),
}


class ConfigError(ValueError):
    pass


def load_config(path=None, use_dotenv=True):
    """
    Build the bus configuration: defaults, then the JSON file (if present),
    then SO_ARM_* environment variables (a .env file is loaded first).
    """
    if use_dotenv:
        dotenv.load_dotenv()

    config = copy.deepcopy(DEFAULT_CONFIG)
    config_path = Path(path) if path is not None else CONFIG_FILE

    if config_path.exists():
        try:
            with open(config_path, "r") as f:
                file_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"could not read {config_path}: {e}") from e
        if not isinstance(file_config, dict):
            raise ConfigError(f"{config_path} must contain a JSON object")

        unknown = set(file_config) - set(DEFAULT_CONFIG)
        if unknown:
            log.warning(f"ignoring unknown config keys: {sorted(unknown)}")
        config.update({k: v for k, v in file_config.items() if k in DEFAULT_CONFIG})
    elif path is not None:
        raise ConfigError(f"config file not found: {config_path}")

    for env_name, (key, parse) in ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            config[key] = parse(raw)
        except ValueError as e:
            raise ConfigError(f"invalid value for {env_name}: {raw!r}") from e

    return config


def save_config(config, path=None):
    config_path = Path(path) if path is not None else CONFIG_FILE
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        json.dump(config, f, indent=4)
    log.info(f"configuration saved to {config_path}")
    return config_path


@dataclass(frozen=True)
class BusSettings:
    """Timing and addressing used by ServoBusController."""

    read_timeout: float = DEFAULT_CONFIG["read_timeout"]
    inter_command_delay: float = DEFAULT_CONFIG["inter_command_delay"]
    inter_transaction_delay: float = DEFAULT_CONFIG["inter_transaction_delay"]
    motor_ids: Tuple[int, ...] = field(default=SO_ARM_MOTOR_IDS)
    verify_responses: bool = False

    def __post_init__(self):
        if self.read_timeout <= 0:
            raise ConfigError(f"read_timeout must be positive: {self.read_timeout}")
        if self.inter_command_delay < 0 or self.inter_transaction_delay < 0:
            raise ConfigError("delays must not be negative")
        for motor_id in self.motor_ids:
            if not 1 <= motor_id <= 252:
                raise ConfigError(f"motor id out of range 1-252: {motor_id}")
        # ascending, de-duplicated
        object.__setattr__(self, "motor_ids", tuple(sorted(set(self.motor_ids))))

    @classmethod
    def from_config(cls, config: Optional[dict] = None) -> "BusSettings":
        config = config or DEFAULT_CONFIG
        return cls(
            read_timeout=float(config.get("read_timeout", DEFAULT_CONFIG["read_timeout"])),
            inter_command_delay=float(config.get("inter_command_delay", DEFAULT_CONFIG["inter_command_delay"])),
            inter_transaction_delay=float(config.get("inter_transaction_delay", DEFAULT_CONFIG["inter_transaction_delay"])),
            motor_ids=tuple(config.get("motor_ids", SO_ARM_MOTOR_IDS)),
            verify_responses=bool(config.get("verify_responses", False)),
        )
