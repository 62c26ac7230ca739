"""
Modbus TCP Client Configuration
Defaults are read from the environment once at import time.
"""

import os

from pydantic import BaseModel, ConfigDict, Field

# ==================== PROTOCOL DEFAULTS ====================

MODBUS_CONFIG = {
    "port": int(os.getenv("MODBUS_PORT", 502)),
    "unit_id": int(os.getenv("MODBUS_UNIT_ID", 0)),
    "timeout_s": float(os.getenv("MODBUS_TIMEOUT_S", 2.0)),
    "healthy_idle_s": 10.0,  # is_healthy() turns False after this long without a reply
}

# ==================== LOGGING CONFIGURATION ====================

LOGGING_CONFIG = {
    "level": os.getenv("LOG_LEVEL", "INFO"),
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}


class ClientSettings(BaseModel):
    """Connection identity of one client; immutable once built."""

    model_config = ConfigDict(frozen=True)

    hostname: str = Field(min_length=1)
    port: int = Field(default=MODBUS_CONFIG["port"], ge=0, le=65535)
    unit_identifier: int = Field(default=MODBUS_CONFIG["unit_id"], ge=0, le=255)
