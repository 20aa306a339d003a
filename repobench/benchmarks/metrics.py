from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from typing import Iterable, TextIO

import httpx
from prometheus_client.parser import text_string_to_metric_families

LOGGER = logging.getLogger("repobench.benchmark.metrics")

TARGET_FAMILY = "api_request_duration_seconds"
MONITORED_OPERATIONS = frozenset({"getObject", "uploadObject"})
OPERATION_LABEL = "operation"

_GROUPING_LABELS = ("le", "quantile")


class MetricsScrapeError(Exception):
    """Raised when the metrics endpoint cannot be fetched or parsed."""


@dataclass
class MetricSample:
    """One labelled series of a histogram or summary family."""

    name: str
    labels: dict[str, str]
    count: float | None = None
    sum: float | None = None
    buckets: dict[str, float] = field(default_factory=dict)
    quantiles: dict[str, float] = field(default_factory=dict)

    @property
    def operation(self) -> str | None:
        return self.labels.get(OPERATION_LABEL)

    def to_row(self) -> dict[str, object]:
        return {
            "name": self.name,
            "operation": self.operation,
            "labels": ",".join(f"{k}={v}" for k, v in sorted(self.labels.items())),
            "count": self.count,
            "sum": self.sum,
            **{f"le_{le}": value for le, value in self.buckets.items()},
            **{f"q_{q}": value for q, value in self.quantiles.items()},
        }

    def format(self) -> str:
        labels = " ".join(f"{k}={v!r}" for k, v in sorted(self.labels.items()))
        parts = [f"{self.name} {{{labels}}} count={self.count} sum={self.sum}"]
        if self.buckets:
            parts.append(
                "buckets=[" + ", ".join(f"{le}:{v:g}" for le, v in self.buckets.items()) + "]"
            )
        if self.quantiles:
            parts.append(
                "quantiles=[" + ", ".join(f"{q}:{v:g}" for q, v in self.quantiles.items()) + "]"
            )
        return " ".join(parts)


def extract_samples(
    text: str,
    family: str = TARGET_FAMILY,
    operations: Iterable[str] = MONITORED_OPERATIONS,
) -> list[MetricSample]:
    """Group the exposition samples of ``family`` per label set, keeping monitored operations."""

    allowed = frozenset(operations)
    grouped: dict[tuple[tuple[str, str], ...], MetricSample] = {}

    for metric_family in text_string_to_metric_families(text):
        if metric_family.name != family:
            continue
        for sample in metric_family.samples:
            if sample.labels.get(OPERATION_LABEL) not in allowed:
                continue
            series_labels = {
                k: v for k, v in sample.labels.items() if k not in _GROUPING_LABELS
            }
            key = tuple(sorted(series_labels.items()))
            series = grouped.get(key)
            if series is None:
                series = MetricSample(name=metric_family.name, labels=series_labels)
                grouped[key] = series

            if sample.name.endswith("_bucket"):
                le = sample.labels.get("le")
                if le is None:
                    raise ValueError(f"bucket sample {sample.name} has no le label")
                series.buckets[le] = sample.value
            elif sample.name.endswith("_count"):
                series.count = sample.value
            elif sample.name.endswith("_sum"):
                series.sum = sample.value
            elif "quantile" in sample.labels:
                series.quantiles[sample.labels["quantile"]] = sample.value

    return list(grouped.values())


class MetricsScraper:
    """Fetch the service metrics once and pick out the monitored operation latencies."""

    def __init__(
        self,
        endpoint_url: str,
        http_client: httpx.Client,
        family: str = TARGET_FAMILY,
        operations: Iterable[str] = MONITORED_OPERATIONS,
    ) -> None:
        self._url = endpoint_url.rstrip("/") + "/metrics"
        self._http = http_client
        self._family = family
        self._operations = frozenset(operations)

    def scrape(self) -> list[MetricSample]:
        try:
            response = self._http.get(self._url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise MetricsScrapeError(f"failed to fetch {self._url}: {exc}") from exc

        try:
            samples = extract_samples(response.text, self._family, self._operations)
        except ValueError as exc:
            raise MetricsScrapeError(f"failed to parse metrics from {self._url}: {exc}") from exc

        LOGGER.info("Scraped %d %s series from %s", len(samples), self._family, self._url)
        return samples


def print_samples(samples: Iterable[MetricSample], stream: TextIO | None = None) -> None:
    out = stream or sys.stdout
    for sample in samples:
        print(sample.format(), file=out)
