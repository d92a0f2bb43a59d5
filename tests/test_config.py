from pathlib import Path

import pytest

from linkvault.config import Settings, load_settings


def test_defaults_match_folder_rules(monkeypatch):
    for name in ("LINKVAULT_MAX_SUB_FOLDERS", "LINKVAULT_QUOTA_BYTES", "LINKVAULT_MAX_FOLDER_NAME_LEN"):
        monkeypatch.delenv(name, raising=False)
    s = Settings.from_env()
    assert s.max_sub_folders == 10
    assert s.max_folder_name_len == 30
    assert s.quota_bytes == 5 * 1024 * 1024


def test_env_overrides_and_bad_ints_fall_back(monkeypatch):
    monkeypatch.setenv("LINKVAULT_MAX_SUB_FOLDERS", "3")
    monkeypatch.setenv("LINKVAULT_QUOTA_BYTES", "lots")
    monkeypatch.setenv("LINKVAULT_NO_COLOR", "yes")
    s = Settings.from_env()
    assert s.max_sub_folders == 3
    assert s.quota_bytes == 5 * 1024 * 1024
    assert s.no_color is True


def test_yaml_file_overrides_env(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("LINKVAULT_MAX_SUB_FOLDERS", "3")
    cfg = tmp_path / "linkvault.yaml"
    cfg.write_text("max_sub_folders: 7\ndata_path: ~/vault.sqlite\nbogus: 1\n", encoding="utf-8")
    s = load_settings(str(cfg))
    assert s.max_sub_folders == 7
    assert s.resolved_data_path == Path("~/vault.sqlite").expanduser()


def test_yaml_file_must_be_a_mapping(tmp_path: Path):
    cfg = tmp_path / "bad.yaml"
    cfg.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        Settings.from_file(cfg)
