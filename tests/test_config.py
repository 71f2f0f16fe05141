import yaml

from enginectl.config import ConfigManager, ENDPOINT_ENV
from enginectl.transport import DEFAULT_ENDPOINT


def test_default_config_is_written(tmp_path, monkeypatch):
    monkeypatch.delenv(ENDPOINT_ENV, raising=False)
    cm = ConfigManager(tmp_path)

    assert cm.config_file.exists()
    assert cm.get_endpoint() == DEFAULT_ENDPOINT
    assert cm.get_config().polling.containers == 3.0
    assert cm.get_config().polling.images == 5.0
    saved = yaml.safe_load(cm.config_file.read_text())
    assert saved["polling"]["containers"] == 3.0


def test_user_values_merge_with_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv(ENDPOINT_ENV, raising=False)
    (tmp_path / "config.yaml").write_text(
        "engine:\n  endpoint: http://10.0.0.5:2375\n"
        "polling:\n  containers: 1.5\n"
        "logging:\n  level: debug\n  colour: always\n"
    )

    cm = ConfigManager(tmp_path)
    cfg = cm.get_config()

    assert cm.get_endpoint() == "http://10.0.0.5:2375"
    assert cfg.polling.containers == 1.5
    assert cfg.polling.volumes == 5.0
    assert cfg.logs.tail == 200
    assert cm.get_log_level() == "DEBUG"
    assert not hasattr(cfg.logging, "colour")


def test_invalid_yaml_falls_back_to_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv(ENDPOINT_ENV, raising=False)
    (tmp_path / "config.yaml").write_text("engine: [unclosed\n")

    cm = ConfigManager(tmp_path)

    assert cm.get_endpoint() == DEFAULT_ENDPOINT


def test_non_mapping_falls_back_to_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv(ENDPOINT_ENV, raising=False)
    (tmp_path / "config.yaml").write_text("- just\n- a list\n")

    assert ConfigManager(tmp_path).get_config().polling.engine == 5.0


def test_environment_overrides_endpoint(tmp_path, monkeypatch):
    monkeypatch.setenv(ENDPOINT_ENV, "http://remote:2375")
    (tmp_path / "config.yaml").write_text("engine:\n  endpoint: http://10.0.0.5:2375\n")

    assert ConfigManager(tmp_path).get_endpoint() == "http://remote:2375"


def test_custom_log_path(tmp_path, monkeypatch):
    monkeypatch.delenv(ENDPOINT_ENV, raising=False)
    (tmp_path / "config.yaml").write_text(f"logging:\n  file_path: {tmp_path / 'x.log'}\n")

    assert ConfigManager(tmp_path).get_custom_log_path() == str(tmp_path / "x.log")
