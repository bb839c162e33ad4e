import os

import pytest

from hostpulse.config import Settings

STAT = (
    "cpu  100 0 100 800 0 0 0 0 0 0\n"
    "cpu0 50 0 50 400 0 0 0 0 0 0\n"
    "intr 12345\n"
)

STAT_LATER = (
    "cpu  150 0 150 900 0 0 0 0 0 0\n"
    "cpu0 75 0 75 450 0 0 0 0 0 0\n"
    "intr 12400\n"
)

MEMINFO = (
    "MemTotal:           1000 kB\n"
    "MemFree:             100 kB\n"
    "MemAvailable:        300 kB\n"
    "Buffers:              10 kB\n"
    "Cached:              200 kB\n"
    "SwapCached:            0 kB\n"
)

LOADAVG = "0.52 0.58 0.59 2/389 12345\n"

AUTH_LOG_LINES = [
    "Jul 19 16:18:16 web sshd[1201]: Failed password for root from 203.0.113.9 port 52211 ssh2",
    "",
    "Jul 19 16:18:20 web sshd[1201]: Connection closed by authenticating user root 203.0.113.9 port 52211 [preauth]",
    "Jul 19 16:20:01 web CRON[1300]: pam_unix(cron:session): session opened for user root",
]


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for name in list(os.environ):
        if name.startswith('HOSTPULSE_'):
            monkeypatch.delenv(name)
    monkeypatch.setenv('HOSTPULSE_ENV_FILE', str(tmp_path / 'missing.env'))


@pytest.fixture
def proc_root(tmp_path):
    root = tmp_path / 'proc'
    root.mkdir()
    (root / 'stat').write_text(STAT)
    (root / 'meminfo').write_text(MEMINFO)
    (root / 'loadavg').write_text(LOADAVG)
    return root


@pytest.fixture
def auth_log(tmp_path):
    path = tmp_path / 'auth.log'
    path.write_text('\n'.join(AUTH_LOG_LINES) + '\n')
    return path


@pytest.fixture
def settings(proc_root, auth_log, tmp_path):
    return Settings(
        proc_root=str(proc_root),
        auth_log_path=str(auth_log),
        disk_path=str(tmp_path),
    )


@pytest.fixture
def no_sleep(monkeypatch):
    """Skip the CPU sampling window."""
    monkeypatch.setattr('hostpulse.collector.time.sleep', lambda seconds: None)
