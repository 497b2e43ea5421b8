"""
Config Tests
============
Threshold overrides from YAML.
"""
from perfwatch.core.config import DEFAULT_THRESHOLDS, load_thresholds


def test_defaults_without_file():
    assert load_thresholds("") == DEFAULT_THRESHOLDS


def test_yaml_overrides(tmp_path):
    path = tmp_path / "thresholds.yaml"
    path.write_text("lcp_ms: 3000\ncls: not-a-number\nunknown_rule: 5\n", encoding="utf-8")

    thresholds = load_thresholds(str(path))
    assert thresholds["lcp_ms"] == 3000
    assert thresholds["cls"] == DEFAULT_THRESHOLDS["cls"]
    assert "unknown_rule" not in thresholds


def test_missing_file_falls_back(tmp_path):
    assert load_thresholds(str(tmp_path / "missing.yaml")) == DEFAULT_THRESHOLDS


def test_non_mapping_is_ignored(tmp_path):
    path = tmp_path / "thresholds.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    assert load_thresholds(str(path)) == DEFAULT_THRESHOLDS


def test_defaults_are_not_mutated(tmp_path):
    path = tmp_path / "thresholds.yaml"
    path.write_text("fid_ms: 1\n", encoding="utf-8")
    load_thresholds(str(path))
    assert DEFAULT_THRESHOLDS["fid_ms"] == 100
