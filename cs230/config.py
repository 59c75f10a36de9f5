"""
Tester configuration management
"""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Conformance tester settings"""

    model_config = SettingsConfigDict(env_prefix="CS230_", env_file=".env", extra="ignore")

    # Listener
    bind_host: str = "127.0.0.1"

    # Test defaults (CLI falls back to these)
    default_message_count: int = 256
    default_max_message_len: int = 512
    default_identity: str = "example@umass.edu"
    success_token: str = "GOODJOB"

    # Per-connection stream handling
    stream_limit_bytes: int = 64 * 1024
    read_timeout_sec: Optional[float] = None  # None = wait on a stalled client forever

    # Dispatch loop
    dispatch_poll_interval_sec: float = 0.05

    # Client executable supervision
    client_exit_grace_sec: float = 5.0

    # Paths
    project_root: Path = Path(__file__).parent.parent
    log_dir: Path = project_root / "logs"
    log_to_file: bool = False


settings = Settings()
