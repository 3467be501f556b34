"""Tests for config.yaml loading."""

import os
import tempfile

import pytest

from qaflow.config import QaflowConfig
from qaflow.errors import CorruptArtifact


@pytest.fixture
def qaflow_dir(monkeypatch):
    for var in ("QF_DB", "QF_JSON", "QF_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, ".qaflow")
        os.makedirs(path)
        yield path


def _write(qaflow_dir, text):
    with open(os.path.join(qaflow_dir, "config.yaml"), "w") as f:
        f.write(text)


def test_defaults_without_file(qaflow_dir):
    cfg = QaflowConfig.load(qaflow_dir)
    assert cfg.state_dir == ".claude"
    assert cfg.review_marker_max_age == "30m"


def test_reads_settings(qaflow_dir):
    _write(qaflow_dir, "state-dir: .agent\nreview-marker-max-age: 45m\njson: true\n")
    cfg = QaflowConfig.load(qaflow_dir)
    assert cfg.state_dir == ".agent"
    assert cfg.marker_max_age.total_seconds() == 45 * 60
    assert cfg.json_output is True


def test_empty_file_is_defaults(qaflow_dir):
    _write(qaflow_dir, "")
    assert QaflowConfig.load(qaflow_dir) == QaflowConfig()


@pytest.mark.parametrize("text, reason", [
    ("state-dir: [unclosed\n", "flow sequence"),
    ("- a\n- b\n", "mapping"),
    ("state-dir:\n", "state-dir"),
    ("state-dir: ''\n", "state-dir"),
    ("json: 'yes please'\n", "json"),
    ("log-level: 10\n", "log-level"),
])
def test_malformed_config_raises(qaflow_dir, text, reason):
    _write(qaflow_dir, text)
    with pytest.raises(CorruptArtifact) as exc:
        QaflowConfig.load(qaflow_dir)
    assert exc.value.path == os.path.join(qaflow_dir, "config.yaml")
    assert reason in exc.value.reason
