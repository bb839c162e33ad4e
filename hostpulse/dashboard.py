"""
Terminal dashboard controller.

Polls the metrics endpoint on a fixed timer, keeps a bounded rolling window per
charted series and pushes new points into its widgets. A failed tick only flips
the title to an error marker; chart history is left as it was.
"""

import logging
import threading
import time
from collections import deque, namedtuple
from datetime import datetime, timezone

import requests

from .collector import TIMESTAMP_FORMAT

logger = logging.getLogger(__name__)

MAX_DATA_POINTS = 60
FETCH_INTERVAL = 5.0  # seconds

CONNECTION_ERROR = 'Connection Error'
STATE_UPDATED = 'updated'
STATE_ERROR = 'error'

SPARK_CHARS = ' ▁▂▃▄▅▆▇█'

Point = namedtuple('Point', ['timestamp', 'value'])

SeriesConfig = namedtuple('SeriesConfig', ['key', 'data_key', 'label', 'unit', 'y_max'])

LINE_SERIES = (
    SeriesConfig('cpu', 'cpuUsage', 'CPU', '%', 100),
    SeriesConfig('loadAvg1', 'loadAvg1', 'Load 1m', '', None),
    SeriesConfig('loadAvg5', 'loadAvg5', 'Load 5m', '', None),
    SeriesConfig('loadAvg15', 'loadAvg15', 'Load 15m', '', None),
    SeriesConfig('running', 'runningProcesses', 'Running', '', None),
    SeriesConfig('total', 'totalProcesses', 'Processes', '', None),
)

MEMORY_SERIES = (
    SeriesConfig('memUsed', 'memUsed', 'Used', ' kB', None),
    SeriesConfig('memCached', 'memCached', 'Cached', ' kB', None),
    SeriesConfig('memFree', 'memFree', 'Free', ' kB', None),
)

NUMERIC_FIELDS = tuple(c.data_key for c in LINE_SERIES + MEMORY_SERIES) + (
    'memTotal', 'diskUsed', 'diskFree', 'lastPid', 'failedLoginsLastHour',
)


class RollingWindow:
    """Fixed-capacity series of points; the oldest point is dropped first."""

    def __init__(self, capacity=MAX_DATA_POINTS):
        self._points = deque(maxlen=capacity)

    @property
    def capacity(self):
        return self._points.maxlen

    def append(self, timestamp, value):
        self._points.append(Point(timestamp, value))

    def points(self):
        return list(self._points)

    def values(self):
        return [p.value for p in self._points]

    @property
    def latest(self):
        return self._points[-1] if self._points else None

    def __len__(self):
        return len(self._points)

    def __iter__(self):
        return iter(self._points)


def used_percent(used, total):
    if not total:
        return '0'
    return f"{used / total * 100:.1f}"


def disk_used_percent(used_kb, free_kb):
    return used_percent(used_kb, used_kb + free_kb)


def memory_used_percent(mem_used, mem_total):
    return used_percent(mem_used, mem_total)


def sparkline(values, y_max=None, width=MAX_DATA_POINTS):
    values = values[-width:]
    if not values:
        return ''
    top = y_max if y_max else max(values)
    if top <= 0:
        return SPARK_CHARS[0] * len(values)
    steps = len(SPARK_CHARS) - 1
    return ''.join(
        SPARK_CHARS[max(0, min(steps, round(v / top * steps)))] for v in values
    )


class LineWidget:
    """Single-series sparkline with a value label."""

    def __init__(self, config):
        self.config = config
        self.label = '--'
        self.line = ''

    def update(self, window):
        self.line = sparkline(window.values(), self.config.y_max)

    def render(self):
        return f"{self.config.label:<10} {self.label:>12}  {self.line}"


class StackedWidget:
    """Memory chart: used, cached and free sharing one y axis."""

    def __init__(self, configs):
        self.configs = configs
        self.label = '--'
        self.y_max = None
        self.lines = {c.key: '' for c in configs}

    def update(self, windows):
        for config in self.configs:
            self.lines[config.key] = sparkline(windows[config.key].values(), self.y_max)

    def render(self):
        rows = [f"{'Memory':<10} {self.label:>12}"]
        for config in self.configs:
            rows.append(f"  {config.label:<8} {'':>12}  {self.lines[config.key]}")
        return '\n'.join(rows)


class DoughnutWidget:
    """Disk usage: latest used/free split only, no history."""

    def __init__(self):
        self.label = '--'
        self.data = [0, 100]

    def update(self, used, free):
        self.data = [used, free]

    def render(self):
        used, free = self.data
        total = used + free
        filled = round(used / total * 20) if total else 0
        bar = '#' * filled + '.' * (20 - filled)
        return f"{'Disk /':<10} {self.label:>12}  [{bar}]"


class DashboardController:
    def __init__(self, url, session=None, interval=FETCH_INTERVAL):
        self.url = url
        self.interval = interval
        self.session = session or requests.Session()
        self.session.headers.update({'X-Requested-With': 'XMLHttpRequest'})

        self.title = 'Connecting...'
        self.state = None
        self.last_pid = 'N/A'
        self.last_update = '--'
        self.failed_logins = 'N/A'
        self.auth_log = ''
        self.syslog = ''

        # Owned widgets and their windows, built once and never handed out
        self._series = {
            config.key: (LineWidget(config), RollingWindow()) for config in LINE_SERIES
        }
        self._memory_widget = StackedWidget(MEMORY_SERIES)
        self._memory_windows = {config.key: RollingWindow() for config in MEMORY_SERIES}
        self._disk_widget = DoughnutWidget()

    def window(self, key):
        """Copy of the points currently held for ``key``."""
        if key in self._series:
            return self._series[key][1].points()
        return self._memory_windows[key].points()

    def fetch(self):
        """GET one snapshot; raises on transport errors or a malformed body.

        Returns the snapshot timestamp and the checked snapshot fields, so
        nothing is applied to the windows until the whole body is known good.
        """
        response = self.session.get(self.url, params={'t': int(time.time() * 1000)})
        response.raise_for_status()
        return parse_snapshot(response.json())

    def tick(self):
        try:
            timestamp, data = self.fetch()
        except (requests.RequestException, ValueError) as e:
            logger.error("Could not fetch data: %s", e)
            self.title = CONNECTION_ERROR
            self.state = STATE_ERROR
            return False
        self.update(timestamp, data)
        self.state = STATE_UPDATED
        return True

    def update(self, timestamp, data):
        """Apply a snapshot checked by ``parse_snapshot``."""
        self.title = data['hostname']
        self.last_pid = _or_na(data.get('lastPid'))
        self.last_update = timestamp.astimezone().strftime('%H:%M:%S')
        self.failed_logins = _or_na(data.get('failedLoginsLastHour'))

        if data.get('authLog') is not None:
            self.auth_log = '\n'.join(data['authLog'])
        if data.get('syslog') is not None:
            self.syslog = '\n'.join(data['syslog'])

        for config in LINE_SERIES:
            value = data.get(config.data_key)
            if value is None:
                continue
            widget, window = self._series[config.key]
            window.append(timestamp, value)
            widget.label = f"{value}{config.unit}"
            widget.update(window)

        disk_used, disk_free = data.get('diskUsed'), data.get('diskFree')
        if disk_used is not None and disk_free is not None:
            self._disk_widget.update(disk_used, disk_free)
            self._disk_widget.label = f"{disk_used_percent(disk_used, disk_free)}% Used"

        for config in MEMORY_SERIES:
            value = data.get(config.data_key)
            if value is not None:
                self._memory_windows[config.key].append(timestamp, value)
        mem_total, mem_used = data.get('memTotal'), data.get('memUsed')
        if mem_total is not None:
            if mem_used is not None:
                self._memory_widget.label = f"{memory_used_percent(mem_used, mem_total)}% Used"
            self._memory_widget.y_max = mem_total
        self._memory_widget.update(self._memory_windows)

    def render(self):
        rows = [
            self.title,
            f"Last PID: {self.last_pid}   Updated: {self.last_update}   "
            f"Failed logins (1h): {self.failed_logins}",
            '',
        ]
        rows.extend(widget.render() for widget, _ in self._series.values())
        rows.append(self._memory_widget.render())
        rows.append(self._disk_widget.render())
        if self.auth_log:
            rows.extend(['', 'Auth log:', self.auth_log])
        if self.syslog:
            rows.extend(['', 'Syslog:', self.syslog])
        return '\n'.join(rows)

    def run(self, stop_event=None, on_tick=None):
        """Tick now, then every ``interval`` seconds until ``stop_event`` is set."""
        stop_event = stop_event or threading.Event()
        started = time.monotonic()
        ticks = 0
        while not stop_event.is_set():
            self.tick()
            if on_tick:
                on_tick(self)
            ticks += 1
            next_tick = started + ticks * self.interval
            stop_event.wait(max(0.0, next_tick - time.monotonic()))


def parse_snapshot(data):
    """Check a decoded snapshot body; raises ValueError on any bad field."""
    if not isinstance(data, dict):
        raise ValueError(f"Received invalid data from sensor: {data!r}")
    hostname = data.get('hostname')
    if not hostname or not isinstance(hostname, str):
        raise ValueError(f"Received invalid data from sensor: {data!r}")
    stamp = data.get('timestamp')
    if not isinstance(stamp, str):
        raise ValueError(f"timestamp must be a string, got {stamp!r}")
    timestamp = datetime.strptime(stamp, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)

    checked = {'hostname': hostname}
    for key in NUMERIC_FIELDS:
        value = data.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
            raise ValueError(f"{key} must be a number, got {value!r}")
        checked[key] = value
    for key in ('authLog', 'syslog'):
        lines = data.get(key)
        if lines is not None and (
            not isinstance(lines, list) or not all(isinstance(line, str) for line in lines)
        ):
            raise ValueError(f"{key} must be a list of strings, got {lines!r}")
        checked[key] = lines
    return timestamp, checked


def _or_na(value):
    return 'N/A' if value is None else value
