import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

CPU_SAMPLING_MODES = ("request", "background")


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 5000

    auth_log_path: str = "/var/log/auth.log"
    # Empty disables the syslog tail.
    syslog_path: str = ""
    log_tail_lines: int = 50

    proc_root: str = "/proc"
    disk_path: str = "/"

    cpu_sampling: str = "request"
    cpu_sample_period: float = 2.0

    require_ajax_header: bool = True
    log_level: str = "INFO"

    dashboard_url: str = "http://localhost:5000/api/metrics"

    def proc_path(self, name):
        return os.path.join(self.proc_root, name)


def _env_bool(name, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _env_number(name, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("HOSTPULSE_ENV_FILE", ".env")
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    defaults = Settings()

    cpu_sampling = os.getenv("HOSTPULSE_CPU_SAMPLING", defaults.cpu_sampling).strip().lower()
    if cpu_sampling not in CPU_SAMPLING_MODES:
        raise ValueError(
            f"HOSTPULSE_CPU_SAMPLING must be one of {', '.join(CPU_SAMPLING_MODES)}, got {cpu_sampling!r}"
        )

    log_tail_lines = _env_number("HOSTPULSE_LOG_TAIL_LINES", defaults.log_tail_lines, int)
    if log_tail_lines < 1:
        raise ValueError("HOSTPULSE_LOG_TAIL_LINES must be at least 1")

    cpu_sample_period = _env_number("HOSTPULSE_CPU_SAMPLE_PERIOD", defaults.cpu_sample_period, float)
    if cpu_sample_period <= 0:
        raise ValueError("HOSTPULSE_CPU_SAMPLE_PERIOD must be positive")

    log_level = os.getenv("HOSTPULSE_LOG_LEVEL", defaults.log_level).strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ValueError(f"HOSTPULSE_LOG_LEVEL must be a logging level name, got {log_level!r}")

    return Settings(
        host=os.getenv("HOSTPULSE_HOST", defaults.host),
        port=_env_number("HOSTPULSE_PORT", defaults.port, int),
        auth_log_path=os.getenv("HOSTPULSE_AUTH_LOG", defaults.auth_log_path),
        syslog_path=os.getenv("HOSTPULSE_SYSLOG", defaults.syslog_path),
        log_tail_lines=log_tail_lines,
        proc_root=os.getenv("HOSTPULSE_PROC_ROOT", defaults.proc_root),
        disk_path=os.getenv("HOSTPULSE_DISK_PATH", defaults.disk_path),
        cpu_sampling=cpu_sampling,
        cpu_sample_period=cpu_sample_period,
        require_ajax_header=_env_bool("HOSTPULSE_REQUIRE_AJAX_HEADER", defaults.require_ajax_header),
        log_level=log_level,
        dashboard_url=os.getenv("HOSTPULSE_DASHBOARD_URL", defaults.dashboard_url),
    )
