import re
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import pytest

from hostpulse import collector
from hostpulse.collector import (
    CpuSampler,
    MetricsCollector,
    cpu_usage_between,
    get_cpu_usage,
    get_system_info,
    get_system_stats,
    parse_cpu_fields,
    parse_loadavg,
    parse_meminfo,
    to_kib,
    utc_timestamp,
)

from .conftest import STAT, STAT_LATER

WIRE_KEYS = {
    'hostname', 'timestamp', 'cpuUsage', 'memTotal', 'memUsed', 'memAvailable',
    'memCached', 'memFree', 'loadAvg1', 'loadAvg5', 'loadAvg15', 'runningProcesses',
    'totalProcesses', 'lastPid', 'diskUsed', 'diskFree', 'authLog', 'authLogError',
    'syslog', 'syslogError', 'failedLoginsLastHour',
}


@pytest.fixture
def advancing_stat(monkeypatch, proc_root):
    """Rewrite /proc/stat with later counters during the sampling pause."""
    def fake_sleep(seconds):
        assert seconds == collector.CPU_SAMPLE_INTERVAL
        (proc_root / 'stat').write_text(STAT_LATER)

    monkeypatch.setattr('hostpulse.collector.time.sleep', fake_sleep)
    return proc_root / 'stat'


class TestCpu:
    def test_parse_aggregate_line(self):
        assert parse_cpu_fields(STAT) == [100, 0, 100, 800, 0, 0, 0, 0, 0, 0]

    def test_parse_accepts_four_fields(self):
        assert parse_cpu_fields("cpu 1 2 3 4\n") == [1, 2, 3, 4]

    @pytest.mark.parametrize('text', [
        None,
        '',
        'cpu 1 2 3\n',
        'cpu 1 2 x 4\n',
        'cpu0 1 2 3 4\n',
        'intr 1 2 3 4\n',
    ])
    def test_parse_rejects_malformed(self, text):
        assert parse_cpu_fields(text) is None

    def test_usage_between_samples(self):
        first = [100, 0, 100, 800]
        second = [150, 0, 150, 900]
        # 200 ticks elapsed, 100 of them idle
        assert cpu_usage_between(first, second) == 50.0

    def test_usage_rounds_to_two_decimals(self):
        assert cpu_usage_between([0, 0, 0, 0], [1, 0, 1, 1]) == 66.67

    def test_no_elapsed_ticks_is_zero(self):
        sample = [100, 0, 100, 800]
        assert cpu_usage_between(sample, list(sample)) == 0.0

    def test_get_cpu_usage_samples_twice(self, advancing_stat):
        assert get_cpu_usage(str(advancing_stat)) == 50.0

    def test_get_cpu_usage_missing_file(self, tmp_path, no_sleep):
        assert get_cpu_usage(str(tmp_path / 'nope')) is None

    def test_get_cpu_usage_malformed_second_read(self, monkeypatch, proc_root):
        stat = proc_root / 'stat'
        monkeypatch.setattr(
            'hostpulse.collector.time.sleep', lambda s: stat.write_text("cpu 1 2\n")
        )
        assert get_cpu_usage(str(stat)) is None

    def test_get_cpu_usage_unchanged_counters(self, proc_root, no_sleep):
        assert get_cpu_usage(str(proc_root / 'stat')) == 0.0


class TestMemoryAndLoad:
    def test_meminfo_fields(self, proc_root):
        values = parse_meminfo((proc_root / 'meminfo').read_text())
        assert values == {
            'mem_total': 1000,
            'mem_free': 100,
            'mem_available': 300,
            'mem_cached': 200,
            'mem_used': 700,
        }

    def test_cached_does_not_match_swap_cached(self):
        values = parse_meminfo("MemTotal: 10 kB\nSwapCached: 5 kB\n")
        assert values['mem_cached'] is None

    def test_mem_used_needs_available(self):
        values = parse_meminfo("MemTotal: 1000 kB\nMemFree: 100 kB\n")
        assert values['mem_total'] == 1000
        assert values['mem_used'] is None

    def test_meminfo_unreadable(self):
        assert set(parse_meminfo(None).values()) == {None}

    def test_loadavg(self):
        assert parse_loadavg("0.52 0.58 0.59 2/389 12345\n") == {
            'load_avg1': 0.52,
            'load_avg5': 0.58,
            'load_avg15': 0.59,
            'running_processes': 2,
            'total_processes': 389,
            'last_pid': 12345,
        }

    @pytest.mark.parametrize('text', [None, '', '0.52 0.58 0.59 2-389 12345', '0.52 0.58'])
    def test_loadavg_malformed(self, text):
        assert set(parse_loadavg(text).values()) == {None}


def test_to_kib_rounds_half_up():
    assert to_kib(1024) == 1
    assert to_kib(1535) == 1
    assert to_kib(1536) == 2
    assert to_kib(0) == 0


def test_utc_timestamp_format():
    moment = datetime(2024, 7, 19, 16, 18, 16, 999, tzinfo=timezone.utc)
    assert utc_timestamp(moment) == '2024-07-19T16:18:16Z'


class TestMetricsCollector:
    def test_collect_snapshot(self, settings, advancing_stat):
        snapshot = MetricsCollector(settings).collect().to_dict()

        assert set(snapshot) == WIRE_KEYS
        assert snapshot['hostname']
        assert re.fullmatch(r'\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z', snapshot['timestamp'])
        assert snapshot['cpuUsage'] == 50.0
        assert snapshot['memTotal'] == 1000
        assert snapshot['memUsed'] == 700
        assert snapshot['memCached'] == 200
        assert snapshot['loadAvg15'] == 0.59
        assert snapshot['lastPid'] == 12345
        assert isinstance(snapshot['diskUsed'], int)
        assert isinstance(snapshot['diskFree'], int)
        assert snapshot['diskUsed'] >= 0 and snapshot['diskFree'] >= 0
        assert len(snapshot['authLog']) == 3
        assert snapshot['authLogError'] is None
        assert snapshot['syslog'] == []
        assert isinstance(snapshot['failedLoginsLastHour'], int)

    def test_missing_sources_become_null(self, settings, tmp_path, no_sleep):
        settings = replace(settings, proc_root=str(tmp_path / 'no-proc'))
        snapshot = MetricsCollector(settings).collect().to_dict()

        for key in ('cpuUsage', 'memTotal', 'memUsed', 'loadAvg1', 'runningProcesses', 'lastPid'):
            assert snapshot[key] is None
        assert snapshot['diskFree'] is not None

    def test_failing_source_does_not_spoil_others(self, settings, no_sleep):
        metrics = MetricsCollector(settings)

        def broken():
            raise RuntimeError("statvfs exploded")

        metrics.sources['disk'] = broken
        snapshot = metrics.collect().to_dict()

        assert snapshot['diskUsed'] is None
        assert snapshot['diskFree'] is None
        assert snapshot['memUsed'] == 700

    def test_missing_disk_path(self, settings, tmp_path, no_sleep):
        settings = replace(settings, disk_path=str(tmp_path / 'not-mounted'))
        snapshot = MetricsCollector(settings).collect()
        assert snapshot.disk_used is None
        assert snapshot.disk_free is None

    def test_unreadable_auth_log(self, settings, tmp_path, no_sleep):
        missing = tmp_path / 'secure'
        settings = replace(settings, auth_log_path=str(missing))
        snapshot = MetricsCollector(settings).collect().to_dict()

        message = f"Log file '{missing}' is not readable. Check permissions."
        assert snapshot['authLog'] == [message]
        assert snapshot['authLogError'] == message
        assert snapshot['failedLoginsLastHour'] is None

    def test_syslog_only_when_configured(self, settings, tmp_path, no_sleep):
        assert 'syslog' not in MetricsCollector(settings).sources

        syslog = tmp_path / 'syslog'
        syslog.write_text("one\ntwo\nthree\n")
        settings = replace(settings, syslog_path=str(syslog), log_tail_lines=2)
        snapshot = MetricsCollector(settings).collect().to_dict()

        assert snapshot['syslog'] == ['two', 'three']
        assert snapshot['syslogError'] is None

    def test_background_sampler_replaces_blocking_read(self, settings, monkeypatch):
        def fail_sleep(seconds):
            raise AssertionError("request path must not block")

        sampler = CpuSampler(settings.proc_path('stat'))
        sampler.sample()
        Path(settings.proc_path('stat')).write_text(STAT_LATER)
        sampler.sample()
        monkeypatch.setattr('hostpulse.collector.time.sleep', fail_sleep)

        snapshot = MetricsCollector(settings, cpu_sampler=sampler).collect()
        assert snapshot.cpu_usage == 50.0

    def test_get_system_stats(self, settings, no_sleep):
        stats = get_system_stats(settings)
        assert stats['memAvailable'] == 300


class TestCpuSampler:
    def test_needs_two_samples(self, proc_root):
        sampler = CpuSampler(str(proc_root / 'stat'))
        assert sampler.sample() is None
        assert sampler.latest is None

        (proc_root / 'stat').write_text(STAT_LATER)
        assert sampler.sample() == 50.0
        assert sampler.latest == 50.0

    def test_unreadable_stat_resets(self, proc_root):
        stat = proc_root / 'stat'
        sampler = CpuSampler(str(stat))
        sampler.sample()
        stat.write_text(STAT_LATER)
        sampler.sample()

        stat.unlink()
        assert sampler.sample() is None
        assert sampler.latest is None

    def test_start_and_stop(self, proc_root):
        sampler = CpuSampler(str(proc_root / 'stat'), period=0.01)
        thread = sampler.start()
        assert sampler.start() is thread
        sampler.stop()
        assert not thread.is_alive()


def test_system_info_keys():
    info = get_system_info()
    assert info['hostname']
    assert {'platform', 'cpu_cores_logical', 'boot_time', 'uptime_seconds'} <= set(info)
