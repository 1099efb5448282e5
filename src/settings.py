"""
Configuration for the Returns Intake engine.

Settings are read from config.ini with configparser. A missing file is not
an error: every option has a fallback, so a fresh device works out of the box.

Example config.ini:
    [Session]
    StaleAfterHours = 24
    StateDir = C:\\ReturnsIntake\\state
    DeviceId = DOCK-03

    [Scanning]
    MaxOverQuantityRatio = 0
    RequireOrderRecord = false
    RequireEvidencePhoto = true

    [Store]
    DatabasePath = C:\\ReturnsIntake\\intake.db

    [Logging]
    LogLevel = INFO
    MaxLogSizeMB = 10
    LogRetentionDays = 30
"""

import configparser
import os
import socket
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

from exceptions import ConfigurationError

# Environment variable that overrides the config.ini location
CONFIG_ENV_VAR = "RETURNS_INTAKE_CONFIG"

DEFAULT_CONFIG_PATH = "config.ini"

# Base directory for device-local files (snapshots, logs, database)
DEFAULT_BASE_DIR = Path(os.path.expanduser("~")) / ".returns_intake"


def load_config(config_path: Optional[str] = None) -> configparser.ConfigParser:
    """
    Load config.ini into a ConfigParser.

    Lookup order: explicit argument, RETURNS_INTAKE_CONFIG, ./config.ini.

    Returns:
        ConfigParser with the file's contents, or an empty parser when the
        file does not exist (callers use fallback values).
    """
    config = configparser.ConfigParser()
    path = Path(config_path or os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH))

    if path.exists():
        config.read(path, encoding='utf-8')

    return config


@dataclass
class IntakeSettings:
    """
    Resolved engine settings.

    Attributes:
        stale_after_hours (float): Snapshots older than this are never resumed
        state_dir (Path): Directory holding the session snapshot file
        device_id (str): Identifier of this scanning device, written into
                         snapshots and log records
        max_over_quantity_ratio (float): Ceiling on scans per tracking number
                                         as a multiple of the declared total.
                                         0 disables the ceiling.
        require_order_record (bool): Reject LPNs that have no order record
        require_evidence_photo (bool): Require a photo when missing parts or
                                       damage are recorded
        database_path (Path): SQLite file used by SQLiteInboundStore
    """
    stale_after_hours: float = 24.0
    state_dir: Path = DEFAULT_BASE_DIR / "state"
    device_id: str = ""
    max_over_quantity_ratio: float = 0.0
    require_order_record: bool = False
    require_evidence_photo: bool = True
    database_path: Path = DEFAULT_BASE_DIR / "intake.db"

    def __post_init__(self):
        if not self.device_id:
            self.device_id = socket.gethostname()

    @property
    def stale_after(self) -> timedelta:
        return timedelta(hours=self.stale_after_hours)

    @classmethod
    def from_config(cls, config: configparser.ConfigParser) -> "IntakeSettings":
        """
        Build settings from a parsed config.ini.

        Raises:
            ConfigurationError: If a numeric or boolean option cannot be parsed
                                or is out of range
        """
        try:
            stale_after_hours = config.getfloat('Session', 'StaleAfterHours', fallback=24.0)
            max_ratio = config.getfloat('Scanning', 'MaxOverQuantityRatio', fallback=0.0)
            require_order = config.getboolean('Scanning', 'RequireOrderRecord', fallback=False)
            require_photo = config.getboolean('Scanning', 'RequireEvidencePhoto', fallback=True)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value in config.ini: {e}")

        if stale_after_hours <= 0:
            raise ConfigurationError("StaleAfterHours must be greater than 0")

        # A ceiling below 1.0 would refuse scans the manifest itself declares
        if max_ratio != 0 and max_ratio < 1.0:
            raise ConfigurationError("MaxOverQuantityRatio must be 0 (unlimited) or at least 1.0")

        state_dir = config.get('Session', 'StateDir', fallback='')
        database_path = config.get('Store', 'DatabasePath', fallback='')

        return cls(
            stale_after_hours=stale_after_hours,
            state_dir=Path(state_dir).expanduser() if state_dir else DEFAULT_BASE_DIR / "state",
            device_id=config.get('Session', 'DeviceId', fallback=''),
            max_over_quantity_ratio=max_ratio,
            require_order_record=require_order,
            require_evidence_photo=require_photo,
            database_path=Path(database_path).expanduser() if database_path else DEFAULT_BASE_DIR / "intake.db",
        )


def load_settings(config_path: Optional[str] = None) -> IntakeSettings:
    """Read config.ini and return resolved IntakeSettings."""
    return IntakeSettings.from_config(load_config(config_path))
