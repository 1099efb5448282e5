"""
Unit tests for src/settings.py.

Tests cover:
- Defaults when config.ini is absent
- Parsing of every section
- ConfigurationError on invalid values
"""

import configparser
from datetime import timedelta
from pathlib import Path

import pytest

from exceptions import ConfigurationError
from settings import CONFIG_ENV_VAR, IntakeSettings, load_config, load_settings


def _config(**sections):
    config = configparser.ConfigParser()
    for section, values in sections.items():
        config[section] = values
    return config


class TestIntakeSettings:

    def test_defaults_from_empty_config(self):
        settings = IntakeSettings.from_config(configparser.ConfigParser())

        assert settings.stale_after == timedelta(hours=24)
        assert settings.max_over_quantity_ratio == 0.0
        assert settings.require_order_record is False
        assert settings.require_evidence_photo is True
        assert settings.device_id  # falls back to the host name

    def test_all_sections(self, tmp_path):
        settings = IntakeSettings.from_config(_config(
            Session={'StaleAfterHours': '12', 'StateDir': str(tmp_path / 'state'), 'DeviceId': 'DOCK-03'},
            Scanning={'MaxOverQuantityRatio': '2', 'RequireOrderRecord': 'yes',
                      'RequireEvidencePhoto': 'false'},
            Store={'DatabasePath': str(tmp_path / 'db.sqlite')},
        ))

        assert settings.stale_after == timedelta(hours=12)
        assert settings.state_dir == tmp_path / 'state'
        assert settings.device_id == 'DOCK-03'
        assert settings.max_over_quantity_ratio == 2.0
        assert settings.require_order_record is True
        assert settings.require_evidence_photo is False
        assert settings.database_path == tmp_path / 'db.sqlite'

    def test_home_directory_expanded(self):
        settings = IntakeSettings.from_config(_config(Session={'StateDir': '~/intake-state'}))
        assert settings.state_dir == Path('~/intake-state').expanduser()

    @pytest.mark.parametrize("section,option,value", [
        ('Session', 'StaleAfterHours', 'soon'),
        ('Session', 'StaleAfterHours', '0'),
        ('Scanning', 'MaxOverQuantityRatio', '0.5'),
        ('Scanning', 'RequireOrderRecord', 'maybe'),
    ])
    def test_invalid_values(self, section, option, value):
        with pytest.raises(ConfigurationError):
            IntakeSettings.from_config(_config(**{section: {option: value}}))


class TestLoadConfig:

    def test_missing_file_gives_empty_parser(self, tmp_path):
        config = load_config(str(tmp_path / 'absent.ini'))
        assert config.sections() == []

    def test_env_var_location(self, tmp_path, monkeypatch):
        path = tmp_path / 'intake.ini'
        path.write_text("[Session]\nDeviceId = DOCK-ENV\n", encoding='utf-8')
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert load_settings().device_id == 'DOCK-ENV'
