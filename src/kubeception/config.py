"""Controller configuration.

Settings come from built-in defaults, an optional YAML file and command
line flags, in increasing order of precedence.
"""

import dataclasses
from dataclasses import dataclass
from typing import Any

import yaml

from kubeception.exceptions import ConfigurationError
from kubeception.ratelimit import DEFAULT_BASE_DELAY, DEFAULT_BURST, DEFAULT_MAX_DELAY, DEFAULT_QPS

DEFAULT_WORKER_COUNT = 5
DEFAULT_RESYNC_PERIOD = 30.0


@dataclass(frozen=True, slots=True)
class ControllerConfig:
    """Runtime settings of the cluster controller.

    Attributes:
        kubeconfig: Path to a kubeconfig; only required out of cluster.
        master: API server address overriding the kubeconfig.
        context: Kubeconfig context to use.
        worker_count: Number of parallel reconcile workers.
        resync_period: Seconds between periodic re-enqueues of every cluster.
        base_delay: First retry delay of a failing cluster, in seconds.
        max_delay: Retry delay ceiling, in seconds.
        qps: Overall retry rate of the token bucket.
        burst: Token bucket size.

    """

    kubeconfig: str | None = None
    master: str | None = None
    context: str | None = None
    worker_count: int = DEFAULT_WORKER_COUNT
    resync_period: float = DEFAULT_RESYNC_PERIOD
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    qps: float = DEFAULT_QPS
    burst: int = DEFAULT_BURST

    def __post_init__(self) -> None:
        if self.worker_count < 1:
            raise ConfigurationError("worker-count must be at least 1")
        if self.resync_period < 0:
            raise ConfigurationError("resync-period cannot be negative")
        if self.base_delay <= 0 or self.max_delay < self.base_delay:
            raise ConfigurationError("base-delay must be positive and not greater than max-delay")
        if self.qps <= 0 or self.burst < 1:
            raise ConfigurationError("qps must be positive and burst at least 1")

    def merge(self, **overrides: Any) -> "ControllerConfig":
        """Return a copy with every non-None override applied."""
        return dataclasses.replace(self, **{key: value for key, value in overrides.items() if value is not None})


_FIELD_TYPES: dict[str, tuple[type, ...]] = {
    "kubeconfig": (str,),
    "master": (str,),
    "context": (str,),
    "worker_count": (int,),
    "resync_period": (int, float),
    "base_delay": (int, float),
    "max_delay": (int, float),
    "qps": (int, float),
    "burst": (int,),
}


def load_config(path: str) -> ControllerConfig:
    """Load controller settings from a YAML file.

    Keys may use dashes or underscores (``worker-count`` or ``worker_count``).

    Args:
        path: Path to the configuration file.

    Returns:
        The configuration, with defaults for missing keys.

    Raises:
        ConfigurationError: If the file does not exist, is not valid YAML,
            is not a mapping, or has unknown keys or wrong value types.

    """
    try:
        with open(path) as stream:
            data = yaml.safe_load(stream)
    except FileNotFoundError as err:
        raise ConfigurationError(f"Configuration file '{path}' does not exist") from err
    except yaml.YAMLError as err:
        raise ConfigurationError(f"Configuration file '{path}' contains malformed YAML: {err}") from err

    if data is None:
        return ControllerConfig()
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file '{path}' does not contain a YAML mapping")

    values: dict[str, Any] = {}
    for raw_key, value in data.items():
        key = str(raw_key).replace("-", "_")
        expected = _FIELD_TYPES.get(key)
        if expected is None:
            raise ConfigurationError(f"Unknown configuration key '{raw_key}'")
        # bool is an int subclass but never a valid setting here
        if isinstance(value, bool) or not isinstance(value, expected):
            raise ConfigurationError(f"Configuration key '{raw_key}' has an invalid value: {value!r}")
        values[key] = value

    return ControllerConfig(**values)
