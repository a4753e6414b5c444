"""Tests for config.py module."""

import pytest

from kubeception.config import DEFAULT_WORKER_COUNT, ControllerConfig, load_config
from kubeception.exceptions import ConfigurationError


@pytest.fixture
def config_file(tmp_path):
    """Write a configuration file and return its path."""

    def write(content: str) -> str:
        path = tmp_path / "kubeception.yaml"
        path.write_text(content)
        return str(path)

    return write


class TestLoadConfig:
    """Tests for reading the YAML configuration file."""

    def test_valid_file(self, config_file):
        """Test every supported key is read."""
        cfg = load_config(
            config_file(
                "kubeconfig: /etc/kube/config\n"
                "worker_count: 3\n"
                "resync_period: 60\n"
                "base_delay: 0.1\n"
                "max_delay: 30\n"
                "qps: 5\n"
                "burst: 20\n"
            )
        )

        assert cfg.kubeconfig == "/etc/kube/config"
        assert cfg.worker_count == 3
        assert cfg.resync_period == 60
        assert cfg.base_delay == 0.1
        assert cfg.max_delay == 30
        assert cfg.qps == 5
        assert cfg.burst == 20

    def test_dashed_keys(self, config_file):
        """Test keys may be written with dashes."""
        cfg = load_config(config_file("worker-count: 2\nresync-period: 0\n"))

        assert cfg.worker_count == 2
        assert cfg.resync_period == 0

    def test_empty_file_uses_defaults(self, config_file):
        """Test an empty file yields the defaults."""
        assert load_config(config_file("")) == ControllerConfig()

    def test_unknown_key(self, config_file):
        """Test unknown keys are rejected."""
        with pytest.raises(ConfigurationError, match="Unknown configuration key 'workers'"):
            load_config(config_file("workers: 2\n"))

    def test_wrong_type(self, config_file):
        """Test values of the wrong type are rejected."""
        with pytest.raises(ConfigurationError, match="invalid value"):
            load_config(config_file("worker_count: many\n"))

    def test_bool_is_not_int(self, config_file):
        """Test booleans are not accepted as numbers."""
        with pytest.raises(ConfigurationError):
            load_config(config_file("burst: true\n"))

    def test_not_a_mapping(self, config_file):
        """Test a top-level list is rejected."""
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(config_file("- a\n- b\n"))

    def test_missing_file(self, tmp_path):
        """Test a missing file is reported."""
        with pytest.raises(ConfigurationError, match="does not exist"):
            load_config(str(tmp_path / "missing.yaml"))

    def test_malformed_yaml(self, config_file):
        """Test broken YAML is reported."""
        with pytest.raises(ConfigurationError, match="malformed YAML"):
            load_config(config_file("worker_count: [1, 2\n"))

    def test_invalid_value_range(self, config_file):
        """Test semantic validation applies to file values."""
        with pytest.raises(ConfigurationError, match="worker-count"):
            load_config(config_file("worker_count: 0\n"))


class TestControllerConfig:
    """Tests for the settings object."""

    def test_defaults(self):
        """Test default settings."""
        cfg = ControllerConfig()

        assert cfg.worker_count == DEFAULT_WORKER_COUNT
        assert cfg.kubeconfig is None

    def test_merge_ignores_none(self):
        """Test unset flags do not override file values."""
        cfg = ControllerConfig(worker_count=3, master="https://a:6443")

        merged = cfg.merge(worker_count=None, master="https://b:6443")

        assert merged.worker_count == 3
        assert merged.master == "https://b:6443"

    def test_max_delay_below_base(self):
        """Test an inverted backoff range is rejected."""
        with pytest.raises(ConfigurationError):
            ControllerConfig(base_delay=1.0, max_delay=0.5)
