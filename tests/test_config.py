import pytest

from hostpulse.config import Settings, get_settings


def test_defaults():
    settings = get_settings()
    assert settings == Settings()
    assert settings.auth_log_path == '/var/log/auth.log'
    assert settings.syslog_path == ''
    assert settings.log_tail_lines == 50
    assert settings.require_ajax_header is True
    assert settings.proc_path('stat') == '/proc/stat'


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv('HOSTPULSE_PORT', '8080')
    monkeypatch.setenv('HOSTPULSE_SYSLOG', '/var/log/syslog')
    monkeypatch.setenv('HOSTPULSE_CPU_SAMPLING', 'Background')
    monkeypatch.setenv('HOSTPULSE_CPU_SAMPLE_PERIOD', '0.5')
    monkeypatch.setenv('HOSTPULSE_REQUIRE_AJAX_HEADER', 'off')
    monkeypatch.setenv('HOSTPULSE_LOG_LEVEL', 'debug')

    settings = get_settings()

    assert settings.port == 8080
    assert settings.syslog_path == '/var/log/syslog'
    assert settings.cpu_sampling == 'background'
    assert settings.cpu_sample_period == 0.5
    assert settings.require_ajax_header is False
    assert settings.log_level == 'DEBUG'


def test_env_file(monkeypatch, tmp_path):
    env_file = tmp_path / '.env'
    env_file.write_text("HOSTPULSE_PORT=6000\nHOSTPULSE_AUTH_LOG=/var/log/secure\n")
    monkeypatch.setenv('HOSTPULSE_ENV_FILE', str(env_file))
    # Registered so load_dotenv's writes are undone after the test
    for name in ('HOSTPULSE_PORT', 'HOSTPULSE_AUTH_LOG'):
        monkeypatch.setenv(name, '')
        monkeypatch.delenv(name)

    settings = get_settings()

    assert settings.port == 6000
    assert settings.auth_log_path == '/var/log/secure'


def test_real_environment_beats_env_file(monkeypatch, tmp_path):
    env_file = tmp_path / '.env'
    env_file.write_text("HOSTPULSE_PORT=6000\n")
    monkeypatch.setenv('HOSTPULSE_ENV_FILE', str(env_file))
    monkeypatch.setenv('HOSTPULSE_PORT', '7000')

    assert get_settings().port == 7000


@pytest.mark.parametrize('name, value', [
    ('HOSTPULSE_PORT', 'eighty'),
    ('HOSTPULSE_CPU_SAMPLING', 'sometimes'),
    ('HOSTPULSE_LOG_TAIL_LINES', '0'),
    ('HOSTPULSE_CPU_SAMPLE_PERIOD', '-1'),
    ('HOSTPULSE_REQUIRE_AJAX_HEADER', 'maybe'),
    ('HOSTPULSE_LOG_LEVEL', 'chatty'),
])
def test_invalid_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        get_settings()
