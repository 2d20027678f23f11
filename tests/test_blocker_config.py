import json

import pytest

from blocker_config import BlockerConfig, load_blocker_config, load_device_settings
from feed_id_map import list_monitored_apps


def test_defaults():
    config = BlockerConfig().validate()
    assert config.grace_period_ms == 2000
    assert config.swipe_threshold == 1
    assert config.global_cooldown_ms == 3000
    assert config.exit_action_delays_ms == (450, 550)
    assert config.scroll_burst_threshold == 3
    assert config.scroll_window_ms == 30000
    assert config.scroll_debounce_ms == 500
    assert config.dwell_ceiling_ms == 120000
    assert config.dwell_cooldown_ms == 60000
    assert config.monitored_apps == frozenset(list_monitored_apps())
    assert "com.instagram.android" in config.monitored_apps


def test_cooldown_must_exceed_delay_span():
    with pytest.raises(ValueError, match="global_cooldown_ms"):
        BlockerConfig(global_cooldown_ms=550).validate()
    BlockerConfig(global_cooldown_ms=551).validate()


@pytest.mark.parametrize("overrides", [
    {'grace_period_ms': 0},
    {'swipe_threshold': -1},
    {'scroll_debounce_ms': -5},
    {'exit_action_delays_ms': ()},
    {'full_screen_coverage': 1.5},
])
def test_invalid_values(overrides):
    with pytest.raises(ValueError):
        BlockerConfig(**overrides).validate()


def test_from_dict():
    config = BlockerConfig.from_dict({
        'swipe_threshold': 2,
        'exit_action_delays_ms': [300],
        'monitored_apps': ['com.example.clips'],
    })
    assert config.swipe_threshold == 2
    assert config.exit_action_delays_ms == (300,)
    assert config.monitored_apps == frozenset({'com.example.clips'})
    assert config.grace_period_ms == 2000


def test_from_dict_rejects_unknown_keys():
    with pytest.raises(ValueError, match="swipe_treshold"):
        BlockerConfig.from_dict({'swipe_treshold': 2})


def test_to_dict_is_json_safe():
    data = BlockerConfig().to_dict()
    json.dumps(data)
    assert BlockerConfig.from_dict(data) == BlockerConfig()


def test_load_blocker_config(tmp_path):
    assert load_blocker_config() == BlockerConfig()

    path = tmp_path / "blocker.json"
    path.write_text(json.dumps({'dwell_ceiling_ms': 90000}), encoding='utf-8')
    assert load_blocker_config(str(path)).dwell_ceiling_ms == 90000

    with pytest.raises(FileNotFoundError):
        load_blocker_config(str(tmp_path / "missing.json"))

    path.write_text("{not json", encoding='utf-8')
    with pytest.raises(ValueError):
        load_blocker_config(str(path))

    path.write_text("[1, 2]", encoding='utf-8')
    with pytest.raises(ValueError):
        load_blocker_config(str(path))


def test_device_settings_from_env_file(tmp_path, monkeypatch):
    for name in ('ADB_PATH', 'APPIUM_URL', 'DEVICE_SERIAL'):
        monkeypatch.delenv(name, raising=False)
    env = tmp_path / ".env"
    env.write_text("ADB_PATH=/opt/sdk/adb\nDEVICE_SERIAL=emulator-5554\n", encoding='utf-8')

    settings = load_device_settings(str(env))
    assert settings.adb_path == "/opt/sdk/adb"
    assert settings.device_serial == "emulator-5554"
    assert settings.appium_url == "http://127.0.0.1:4723"
