import json

from core import config_manager
from core.config_manager import ConfigManager, get_app_data_dir, get_config


def test_defaults_when_file_missing(tmp_path):
    config = ConfigManager(tmp_path / "config.json")

    assert config.get('server.host') == '127.0.0.1'
    assert config.get('server.port') == 8080
    assert config.get_upstream_config()['timeout_total'] == 90
    assert config.get_logging_config()['backup_count'] == 5


def test_file_values_are_merged_over_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({'server': {'port': 9000}, 'upstream': {'limit': 7}}), encoding='utf-8')

    config = ConfigManager(path)

    assert config.get('server.port') == 9000
    assert config.get('server.host') == '127.0.0.1'
    assert config.get('upstream.limit') == 7
    assert config.get('upstream.limit_per_host') == 50


def test_invalid_json_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding='utf-8')

    config = ConfigManager(path)

    assert config.get('server.port') == 8080


def test_get_with_missing_key_returns_default(tmp_path):
    config = ConfigManager(tmp_path / "config.json")

    assert config.get('server.missing', 'fallback') == 'fallback'
    assert config.get('server.port.deeper') is None


def test_set_and_save_round_trip(tmp_path):
    path = tmp_path / "nested" / "config.json"
    config = ConfigManager(path)

    assert config.set('server.port', 9100, save=True) is True
    assert config.set('extra.flag', True) is True

    reloaded = ConfigManager(path)
    assert reloaded.get('server.port') == 9100
    assert reloaded.get('extra.flag') is None


def test_reset_to_defaults(tmp_path):
    config = ConfigManager(tmp_path / "config.json")
    config.set('server.port', 1234)

    assert config.reset_to_defaults() is True
    assert config.get('server.port') == 8080


def test_app_data_dir_override(app_home):
    assert get_app_data_dir() == app_home
    assert ConfigManager().config_path == app_home / 'config.json'


def test_get_config_singleton(app_home, monkeypatch):
    monkeypatch.setattr(config_manager, '_config_instance', None)

    first = get_config()
    assert get_config() is first

    other = get_config(app_home / 'other.json')
    assert other is not first
    assert other.config_path == app_home / 'other.json'
