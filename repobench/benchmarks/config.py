from __future__ import annotations

import contextlib
import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Mapping

from ..client import StorageClient
from .retry import DEFAULT_ATTEMPTS, DEFAULT_DELAY_SECONDS, RetryPolicy, fixed_delay

LOGGER = logging.getLogger("repobench.benchmark.config")

ENV_PREFIX = "BENCHMARK_"

DEFAULT_PARALLELISM = 500
DEFAULT_FILES_AMOUNT = 10_000
DEFAULT_GLOBAL_TIMEOUT_S = 30 * 60.0
DEFAULT_RUN_NAME = "BenchmarkRepository"
DEFAULT_BRANCH = "master"
CONTENT_LENGTH = 1 * 1024
CONTENT_SUFFIX_LENGTH = 32

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


class ConfigError(Exception):
    """Raised when the benchmark configuration is missing or invalid."""


def parse_duration(value: str) -> float:
    """Parse "30m", "1h30m", "90s", "250ms" or plain seconds into seconds."""

    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    try:
        return float(text)
    except ValueError:
        pass

    position = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text) or position == 0:
        raise ValueError(f"invalid duration {value!r}")
    return total


def env_value(env: Mapping[str, str], name: str) -> str | None:
    value = env.get(ENV_PREFIX + name)
    if value is None or not value.strip():
        return None
    return value.strip()


def env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env_value(env, name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        LOGGER.warning(
            "invalid %s%s value %r; defaulting to %d", ENV_PREFIX, name, raw, default
        )
        return default


def env_duration(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env_value(env, name)
    if raw is None:
        return default
    try:
        return parse_duration(raw)
    except ValueError:
        LOGGER.warning(
            "invalid %s%s value %r; defaulting to %.0fs", ENV_PREFIX, name, raw, default
        )
        return default


@dataclass(frozen=True)
class RunConfig:
    """Options for a single benchmark run."""

    endpoint_url: str
    storage_namespace: str
    parallelism_level: int = DEFAULT_PARALLELISM
    files_amount: int = DEFAULT_FILES_AMOUNT
    global_timeout: float = DEFAULT_GLOBAL_TIMEOUT_S
    access_key_id: str | None = None
    secret_access_key: str | None = field(default=None, repr=False)
    run_name: str = DEFAULT_RUN_NAME
    branch: str = DEFAULT_BRANCH
    content_length: int = CONTENT_LENGTH
    content_suffix_length: int = CONTENT_SUFFIX_LENGTH
    retry_attempts: int = DEFAULT_ATTEMPTS
    retry_delay: float = DEFAULT_DELAY_SECONDS
    request_timeout: float = 30.0
    healthcheck_timeout: float = 60.0
    output_dir: Path | None = None

    def __post_init__(self) -> None:
        if not self.endpoint_url:
            raise ConfigError("endpoint_url is required")
        if not self.storage_namespace:
            raise ConfigError("storage_namespace is required")
        if self.parallelism_level < 1:
            raise ConfigError("parallelism_level must be >= 1")
        if self.files_amount < 0:
            raise ConfigError("files_amount must be >= 0")
        if self.global_timeout <= 0:
            raise ConfigError("global_timeout must be > 0")
        if not 0 < self.content_suffix_length <= self.content_length:
            raise ConfigError("content_suffix_length must be in (0, content_length]")
        if self.retry_attempts < 1:
            raise ConfigError("retry_attempts must be >= 1")
        if self.retry_delay < 0:
            raise ConfigError("retry_delay must be >= 0")

    @property
    def credentials(self) -> tuple[str, str] | None:
        if self.access_key_id and self.secret_access_key:
            return self.access_key_id, self.secret_access_key
        return None

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(attempts=self.retry_attempts, delay=fixed_delay(self.retry_delay))


@dataclass
class RunContext:
    """Everything a benchmark component needs, built once per run and passed in."""

    config: RunConfig
    client: StorageClient
    retry_policy: RetryPolicy
    cancel_event: threading.Event = field(default_factory=threading.Event)
    logger: logging.Logger = field(
        default_factory=lambda: logging.getLogger("repobench.benchmark")
    )

    @classmethod
    def from_config(cls, config: RunConfig, client: StorageClient) -> "RunContext":
        return cls(config=config, client=client, retry_policy=config.retry_policy())

    @contextlib.contextmanager
    def deadline(self) -> Iterator[threading.Event]:
        """Fire the cancel event once ``global_timeout`` elapses."""

        timer = threading.Timer(self.config.global_timeout, self._expire)
        timer.daemon = True
        timer.start()
        try:
            yield self.cancel_event
        finally:
            timer.cancel()

    def _expire(self) -> None:
        self.logger.warning(
            "Global timeout of %.0fs reached, cancelling run", self.config.global_timeout
        )
        self.cancel_event.set()
