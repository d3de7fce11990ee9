from enum import Enum
from pathlib import Path
import os

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class IdentityPolicy(str, Enum):
    # Fresh id per connection; the record is dropped on disconnect.
    SERVER_ASSIGNED = "server_assigned"
    # Client sends `join` with a remembered id; the record survives disconnects.
    CLIENT_CLAIMED = "client_claimed"


class StoreBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


class RoomSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="COUNTER_",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
    )

    room_name: str = "default-room"
    identity_policy: IdentityPolicy = IdentityPolicy.SERVER_ASSIGNED
    store_backend: StoreBackend = StoreBackend.MEMORY
    redis_url: str = "redis://127.0.0.1:6379/0"
    id_length: int = Field(default=8, ge=8, le=64)
    heartbeat_interval_seconds: float = Field(default=30.0, gt=0)
    # Unanswered probes tolerated before a connection is reaped.
    heartbeat_missed_probes: int = Field(default=1, ge=1)
    # 0 waits for `join` forever (client-claimed policy only).
    join_timeout_seconds: float = Field(default=10.0, ge=0)
    send_delta_to_others: bool = True


# Load a local .env before the settings instance is created so pydantic-settings sees it.
_here = Path(__file__).resolve().parent
for _env_path in (_here.parent / ".env", Path(os.getcwd()) / ".env"):
    if _env_path.exists():
        load_dotenv(_env_path, override=False)
        break

config = RoomSettings()
