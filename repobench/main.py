from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Mapping

import pandas as pd

from .benchmarks.charts import phases_dataframe, render_phase_chart
from .benchmarks.config import (
    DEFAULT_FILES_AMOUNT,
    DEFAULT_GLOBAL_TIMEOUT_S,
    DEFAULT_PARALLELISM,
    DEFAULT_RUN_NAME,
    ConfigError,
    RunConfig,
    RunContext,
    env_duration,
    env_int,
    env_value,
    parse_duration,
)
from .benchmarks.driver import BenchmarkDriver, BenchmarkReport, SetupError
from .benchmarks.metrics import MetricSample, MetricsScrapeError, MetricsScraper, print_samples
from .client import StorageClient, StorageServiceError, create_http_client

LOGGER = logging.getLogger("repobench")

EXIT_OK = 0
EXIT_SETUP_FAILED = 1
EXIT_SCRAPE_FAILED = 2


def _duration_arg(value: str) -> float:
    try:
        return parse_duration(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def parse_args(
    argv: list[str] | None = None, env: Mapping[str, str] | None = None
) -> argparse.Namespace:
    env = os.environ if env is None else env
    parser = argparse.ArgumentParser(description="Repository storage benchmark harness")
    parser.add_argument("--endpoint-url", default=env_value(env, "ENDPOINT_URL"))
    parser.add_argument("--storage-namespace", default=env_value(env, "STORAGE_NAMESPACE"))
    parser.add_argument(
        "--parallelism",
        type=int,
        default=env_int(env, "PARALLELISM_LEVEL", DEFAULT_PARALLELISM),
        help="Number of concurrent workers per phase",
    )
    parser.add_argument(
        "--files-amount",
        type=int,
        default=env_int(env, "FILES_AMOUNT", DEFAULT_FILES_AMOUNT),
        help="Number of objects uploaded and then read back",
    )
    parser.add_argument(
        "--global-timeout",
        type=_duration_arg,
        default=env_duration(env, "GLOBAL_TIMEOUT", DEFAULT_GLOBAL_TIMEOUT_S),
        help="Run deadline, e.g. 30m, 1h30m or seconds",
    )
    parser.add_argument("--access-key-id", default=env_value(env, "ACCESS_KEY_ID"))
    parser.add_argument("--secret-access-key", default=env_value(env, "SECRET_ACCESS_KEY"))
    parser.add_argument(
        "--run-name",
        default=env_value(env, "RUN_NAME") or DEFAULT_RUN_NAME,
        help="Run identifier; its lower-cased form names the repository",
    )
    parser.add_argument(
        "--output-dir",
        default=env_value(env, "OUTPUT_DIR"),
        help="Optional directory for CSV, JSON and chart artefacts",
    )
    parser.add_argument(
        "--skip-healthcheck",
        action="store_true",
        help="Do not wait for the service health check before the run",
    )
    parser.add_argument(
        "--log-level",
        default=env_value(env, "LOG_LEVEL") or "INFO",
        help="Logging level",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> RunConfig:
    return RunConfig(
        endpoint_url=args.endpoint_url or "",
        storage_namespace=args.storage_namespace or "",
        parallelism_level=args.parallelism,
        files_amount=args.files_amount,
        global_timeout=args.global_timeout,
        access_key_id=args.access_key_id,
        secret_access_key=args.secret_access_key,
        run_name=args.run_name,
        output_dir=Path(args.output_dir) if args.output_dir else None,
    )


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def write_artefacts(
    output_dir: Path,
    config: RunConfig,
    report: BenchmarkReport | None,
    samples: list[MetricSample],
) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    manifest: dict[str, object] = {
        "run_name": config.run_name,
        "parallelism_level": config.parallelism_level,
        "files_amount": config.files_amount,
    }

    if report is not None:
        phases_df = phases_dataframe(report.phases)
        phases_path = output_dir / "phases.csv"
        phases_df.to_csv(phases_path, index=False)
        LOGGER.info("Saved phase results to %s (%d rows)", phases_path, len(phases_df))
        chart_path = render_phase_chart(
            phases_df, output_dir, f"Phase Throughput ({report.repository})"
        )
        manifest["repository"] = report.repository
        manifest["chart"] = str(chart_path)
        manifest["phases"] = phases_df.to_dict(orient="records")

    samples_df = pd.DataFrame([sample.to_row() for sample in samples])
    samples_path = output_dir / "metric_samples.csv"
    samples_df.to_csv(samples_path, index=False)
    LOGGER.info("Saved %d metric samples to %s", len(samples_df), samples_path)
    manifest["metric_samples"] = str(samples_path)

    manifest_path = output_dir / "benchmark_manifest.json"
    with open(manifest_path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, default=str)
    LOGGER.info("Benchmark manifest written to %s", manifest_path)
    return manifest_path


def run(config: RunConfig, storage: StorageClient, wait_healthy: bool = True) -> int:
    exit_code = EXIT_OK
    report: BenchmarkReport | None = None

    try:
        if wait_healthy:
            storage.wait_until_healthy(config.healthcheck_timeout)
        LOGGER.info("Setup succeeded, running the benchmark")
        context = RunContext.from_config(config, storage)
        report = BenchmarkDriver(context).run()
    except (SetupError, StorageServiceError):
        LOGGER.exception("Benchmark run failed")
        exit_code = EXIT_SETUP_FAILED

    scraper = MetricsScraper(config.endpoint_url, storage.http)
    try:
        samples = scraper.scrape()
    except MetricsScrapeError:
        LOGGER.exception("Metrics scrape failed")
        return exit_code or EXIT_SCRAPE_FAILED
    print_samples(samples)

    if config.output_dir is not None:
        write_artefacts(config.output_dir, config, report, samples)
    return exit_code


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = build_config(args)
    except ConfigError as exc:
        print(f"invalid configuration: {exc}", file=sys.stderr)
        return EXIT_SETUP_FAILED

    LOGGER.info("Endpoint: %s", config.endpoint_url)
    LOGGER.info(
        "Parallelism: %d, files: %d, timeout: %.0fs",
        config.parallelism_level,
        config.files_amount,
        config.global_timeout,
    )

    http_client = create_http_client(
        config.endpoint_url,
        credentials=config.credentials,
        timeout_s=config.request_timeout,
        max_connections=config.parallelism_level,
    )
    storage = StorageClient(http_client)
    try:
        return run(config, storage, wait_healthy=not args.skip_healthcheck)
    finally:
        storage.close()


if __name__ == "__main__":
    sys.exit(main())
