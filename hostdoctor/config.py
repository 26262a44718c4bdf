from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "HOSTDOCTOR_",
        "extra": "ignore",
    }

    # Per-user state: rollback journal, scan history, remediation timestamps
    data_dir: Path = Path.home() / ".hostdoctor"

    # Optional YAML scan profile (timeouts, disabled phases, thresholds)
    profile_path: str = ""

    # Phase timeouts (seconds)
    default_phase_timeout: float = 60.0
    slow_phase_timeout: float = 30.0  # gpu, security, updates, software, events
    network_phase_timeout: float = 90.0  # layered above the probe's own HTTP timeout

    # CPU probe: number of one-second load samples
    cpu_sample_count: int = 5

    # Network probe
    network_test_url: str = "https://speed.cloudflare.com/__down?bytes=10000000"
    network_ping_host: str = "1.1.1.1"
    network_dns_host: str = "example.com"
    network_http_timeout: float = 30.0

    # Optimization
    verify_settle_seconds: float = 3.0
    min_action_display_seconds: float = 0.0  # "still working" floor, presentation only

    # History
    history_max_entries: int = 50

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 8765

    # Logging
    log_level: str = "INFO"

    @property
    def rollback_path(self) -> Path:
        return self.data_dir / "rollback.json"

    @property
    def history_path(self) -> Path:
        return self.data_dir / "scan-history.json"

    @property
    def remediation_path(self) -> Path:
        return self.data_dir / "remediation.json"


settings = Settings()
