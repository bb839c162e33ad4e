"""
Host metrics collector.
Samples CPU, memory, load, process and disk counters plus the auth log tail
and assembles them into one snapshot.
"""

import logging
import platform
import re
import socket
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import psutil

from .authlog import count_failed_logins, get_log_tail
from .config import Settings

logger = logging.getLogger(__name__)

# Sampling window between the two /proc/stat reads
CPU_SAMPLE_INTERVAL = 0.4

TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%SZ'

MEMINFO_KEYS = {
    'MemTotal': 'mem_total',
    'MemFree': 'mem_free',
    'MemAvailable': 'mem_available',
    'Cached': 'mem_cached',
}

LOADAVG_RE = re.compile(
    r'^\s*(\d+(?:\.\d+)?)\s+(\d+(?:\.\d+)?)\s+(\d+(?:\.\d+)?)\s+(\d+)/(\d+)\s+(\d+)'
)


@dataclass
class MetricsSnapshot:
    hostname: str
    timestamp: str
    cpu_usage: Optional[float] = None
    mem_total: Optional[int] = None
    mem_used: Optional[int] = None
    mem_available: Optional[int] = None
    mem_cached: Optional[int] = None
    mem_free: Optional[int] = None
    load_avg1: Optional[float] = None
    load_avg5: Optional[float] = None
    load_avg15: Optional[float] = None
    running_processes: Optional[int] = None
    total_processes: Optional[int] = None
    last_pid: Optional[int] = None
    disk_used: Optional[int] = None
    disk_free: Optional[int] = None
    auth_log: list = field(default_factory=list)
    auth_log_error: Optional[str] = None
    syslog: list = field(default_factory=list)
    syslog_error: Optional[str] = None
    failed_logins_last_hour: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        """Snapshot keyed by its JSON wire names."""
        return {wire: getattr(self, attr) for attr, wire in WIRE_NAMES.items()}


WIRE_NAMES = {
    'hostname': 'hostname',
    'timestamp': 'timestamp',
    'cpu_usage': 'cpuUsage',
    'mem_total': 'memTotal',
    'mem_used': 'memUsed',
    'mem_available': 'memAvailable',
    'mem_cached': 'memCached',
    'mem_free': 'memFree',
    'load_avg1': 'loadAvg1',
    'load_avg5': 'loadAvg5',
    'load_avg15': 'loadAvg15',
    'running_processes': 'runningProcesses',
    'total_processes': 'totalProcesses',
    'last_pid': 'lastPid',
    'disk_used': 'diskUsed',
    'disk_free': 'diskFree',
    'auth_log': 'authLog',
    'auth_log_error': 'authLogError',
    'syslog': 'syslog',
    'syslog_error': 'syslogError',
    'failed_logins_last_hour': 'failedLoginsLastHour',
}


def read_text(path):
    try:
        with open(path) as f:
            return f.read()
    except OSError as e:
        logger.debug("Cannot read %s: %s", path, e)
        return None


def parse_cpu_fields(text):
    """Numeric fields of the aggregate ``cpu`` line, or None if fewer than 4."""
    if not text:
        return None
    parts = text.split('\n', 1)[0].split()
    if not parts or parts[0] != 'cpu':
        return None
    fields = []
    # user nice system idle iowait irq softirq steal guest guest_nice
    for token in parts[1:11]:
        try:
            fields.append(float(token))
        except ValueError:
            break
    if len(fields) < 4:
        return None
    return fields


def cpu_usage_between(first, second):
    """Busy percentage between two cpu samples, 0.0 if no time elapsed."""
    delta_total = sum(second) - sum(first)
    delta_idle = second[3] - first[3]
    if delta_total <= 0:
        return 0.0
    return round((1 - delta_idle / delta_total) * 100, 2)


def get_cpu_usage(stat_path='/proc/stat'):
    """Sample ``stat_path`` twice, CPU_SAMPLE_INTERVAL apart."""
    first = parse_cpu_fields(read_text(stat_path))
    if first is None:
        return None
    time.sleep(CPU_SAMPLE_INTERVAL)
    second = parse_cpu_fields(read_text(stat_path))
    if second is None:
        return None
    return cpu_usage_between(first, second)


def parse_meminfo(text):
    values = dict.fromkeys(MEMINFO_KEYS.values())
    values['mem_used'] = None
    if not text:
        return values
    for key, attr in MEMINFO_KEYS.items():
        match = re.search(rf'^{key}:\s+(\d+)', text, re.MULTILINE)
        if match:
            values[attr] = int(match.group(1))
    if values['mem_total'] is not None and values['mem_available'] is not None:
        values['mem_used'] = values['mem_total'] - values['mem_available']
    return values


def parse_loadavg(text):
    keys = ('load_avg1', 'load_avg5', 'load_avg15',
            'running_processes', 'total_processes', 'last_pid')
    match = LOADAVG_RE.match(text or '')
    if not match:
        return dict.fromkeys(keys)
    load1, load5, load15, running, total, last_pid = match.groups()
    return {
        'load_avg1': float(load1),
        'load_avg5': float(load5),
        'load_avg15': float(load15),
        'running_processes': int(running),
        'total_processes': int(total),
        'last_pid': int(last_pid),
    }


def to_kib(num_bytes):
    """Bytes to kibibytes, rounded half up."""
    return (int(num_bytes) + 512) // 1024


def utc_timestamp(now=None):
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


class CpuSampler:
    """Background CPU gauge.

    Reads the aggregate cpu line every ``period`` seconds and keeps the usage
    between the last two samples, so requests never block on the sampling window.
    """

    def __init__(self, stat_path='/proc/stat', period=2.0):
        self.stat_path = stat_path
        self.period = period
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._previous = None
        self._latest = None
        self._thread = None

    @property
    def latest(self):
        with self._lock:
            return self._latest

    def sample(self):
        fields = parse_cpu_fields(read_text(self.stat_path))
        with self._lock:
            if fields is None:
                self._previous = None
                self._latest = None
                return None
            if self._previous is not None:
                self._latest = cpu_usage_between(self._previous, fields)
            self._previous = fields
            return self._latest

    def run(self):
        logger.info("CPU sampler started (every %ss)", self.period)
        while not self._stop_event.is_set():
            self.sample()
            self._stop_event.wait(self.period)

    def start(self):
        if self._thread and self._thread.is_alive():
            return self._thread
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, name='cpu-sampler', daemon=True)
        self._thread.start()
        return self._thread

    def stop(self):
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)


class MetricsCollector:
    def __init__(self, settings: Settings, cpu_sampler: Optional[CpuSampler] = None):
        self.settings = settings
        self.cpu_sampler = cpu_sampler

        # Each source is best-effort; a failure only blanks its own fields
        self.sources = {
            'cpu': self.read_cpu,
            'memory': self.read_memory,
            'load': self.read_load,
            'disk': self.read_disk,
            'auth_log': self.read_auth_log,
        }
        if settings.syslog_path:
            self.sources['syslog'] = self.read_syslog

    def read_cpu(self):
        if self.cpu_sampler is not None:
            return {'cpu_usage': self.cpu_sampler.latest}
        return {'cpu_usage': get_cpu_usage(self.settings.proc_path('stat'))}

    def read_memory(self):
        return parse_meminfo(read_text(self.settings.proc_path('meminfo')))

    def read_load(self):
        return parse_loadavg(read_text(self.settings.proc_path('loadavg')))

    def read_disk(self):
        try:
            usage = psutil.disk_usage(self.settings.disk_path)
        except OSError as e:
            logger.warning("Disk usage for %s unavailable: %s", self.settings.disk_path, e)
            return {'disk_used': None, 'disk_free': None}
        return {
            'disk_used': to_kib(usage.total - usage.free),
            'disk_free': to_kib(usage.free),
        }

    def read_auth_log(self):
        tail = get_log_tail(self.settings.auth_log_path, self.settings.log_tail_lines)
        return {
            'auth_log': tail.lines,
            'auth_log_error': tail.error,
            'failed_logins_last_hour': None if tail.error else count_failed_logins(tail.lines),
        }

    def read_syslog(self):
        tail = get_log_tail(self.settings.syslog_path, self.settings.log_tail_lines)
        return {'syslog': tail.lines, 'syslog_error': tail.error}

    def collect(self) -> MetricsSnapshot:
        """Collect one snapshot from every configured source."""
        values = {}
        for name, source in self.sources.items():
            try:
                values.update(source())
            except Exception:
                logger.exception("Metric source %r failed", name)

        return MetricsSnapshot(
            hostname=socket.gethostname(),
            timestamp=utc_timestamp(),
            **values
        )


def get_system_stats(settings: Optional[Settings] = None) -> dict[str, Any]:
    """Collect a snapshot with the given (or default) settings as a wire dict."""
    return MetricsCollector(settings or Settings()).collect().to_dict()


def get_system_info():
    """Static host details for the header of the dashboard"""
    uname = platform.uname()
    info = {
        'hostname': socket.gethostname(),
        'system': uname.system,
        'release': uname.release,
        'machine': uname.machine,
        'platform': platform.platform(),
        'cpu_cores_physical': None,
        'cpu_cores_logical': None,
        'boot_time': None,
        'uptime_seconds': None,
    }
    try:
        info['cpu_cores_physical'] = psutil.cpu_count(logical=False)
        info['cpu_cores_logical'] = psutil.cpu_count(logical=True)
    except (psutil.Error, OSError) as e:
        logger.warning("CPU count unavailable: %s", e)
    try:
        boot_time = psutil.boot_time()
        info['boot_time'] = datetime.fromtimestamp(boot_time, timezone.utc).strftime(TIMESTAMP_FORMAT)
        info['uptime_seconds'] = int(time.time() - boot_time)
    except (psutil.Error, OSError) as e:
        logger.warning("Boot time unavailable: %s", e)
    return info
