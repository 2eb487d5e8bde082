"""Tests for settings.conf loading and validation."""

import pytest
from pydantic import ValidationError

from config import SettingsError, load_settings, load_settings_conf, validate_settings

def write_settings(tmp_path, body):
    (tmp_path / 'settings.conf').write_text('[DEFAULT]\n' + body)
    return str(tmp_path)

def test_load_settings_applies_defaults(tmp_path):
    path = write_settings(tmp_path, (
        'db_url = memory://\n'
        'marketplace_address = 0xMarket\n'
    ))

    settings = load_settings_conf(path)

    assert settings.uses_memory_backend
    assert settings.marketplace_address == '0xMarket'
    assert settings.retry_delay_ms == 1000
    assert settings.max_retry_attempts == 20
    assert settings.workers_per_queue == 1
    assert settings.api_enabled is False

def test_load_settings_reads_overrides(tmp_path):
    path = write_settings(tmp_path, (
        'db_url = postgresql://root@localhost:26257/marketplace?sslmode=disable\n'
        'marketplace_address = 0xMarket\n'
        'max_retry_attempts = 0\n'
        'workers_per_queue = 4\n'
        'api_enabled = true\n'
    ))

    settings = load_settings_conf(path)

    assert not settings.uses_memory_backend
    assert settings.max_retry_attempts == 0
    assert settings.workers_per_queue == 4
    assert settings.api_enabled is True

def test_missing_required_settings_are_listed(tmp_path):
    path = write_settings(tmp_path, 'workers_per_queue = 2\n')

    with pytest.raises(SettingsError) as exc_info:
        load_settings_conf(path)

    message = str(exc_info.value)
    assert 'Missing required settings' in message
    assert 'db_url' in message
    assert 'marketplace_address' in message

def test_invalid_values_are_reported():
    with pytest.raises(SettingsError) as exc_info:
        validate_settings({
            'db_url': 'memory://',
            'marketplace_address': '0xMarket',
            'workers_per_queue': '0',
            'api_port': 'http'
        })

    message = str(exc_info.value)
    assert 'Invalid settings' in message
    assert 'workers_per_queue' in message
    assert 'api_port' in message

def test_missing_file_points_to_example(tmp_path):
    with pytest.raises(SettingsError) as exc_info:
        load_settings(str(tmp_path))

    assert 'settings.conf.example' in str(exc_info.value)

def test_settings_are_immutable():
    settings = validate_settings({'db_url': 'memory://', 'marketplace_address': '0xMarket'})

    with pytest.raises(ValidationError):
        settings.workers_per_queue = 3
