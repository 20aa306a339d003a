from __future__ import annotations

import secrets
from dataclasses import dataclass

from ..client import StorageServiceError
from .config import RunContext
from .pool import PhaseResult, WorkerPool

UPLOAD_PHASE = "upload"
READ_PHASE = "read"

PHASE_ACTIONS = {UPLOAD_PHASE: "uploading", READ_PHASE: "reading"}


class SetupError(Exception):
    """Raised when the benchmark repository cannot be provisioned."""


@dataclass
class BenchmarkReport:
    repository: str
    upload: PhaseResult
    read: PhaseResult

    @property
    def phases(self) -> list[PhaseResult]:
        return [self.upload, self.read]


def repository_name(run_name: str) -> str:
    return run_name.lower()


def random_hex(length: int) -> str:
    return secrets.token_hex((length + 1) // 2)[:length]


def generate_content_prefix(content_length: int, suffix_length: int) -> str:
    return random_hex(content_length - suffix_length)


def build_content(prefix: str, suffix_length: int) -> bytes:
    # a fresh suffix per object keeps the service from deduplicating uploads
    return (prefix + random_hex(suffix_length)).encode("ascii")


class BenchmarkDriver:
    """Runs one benchmark: repository setup, an upload phase, then a read phase."""

    def __init__(self, context: RunContext) -> None:
        self._ctx = context
        self._config = context.config
        self._client = context.client
        self._logger = context.logger

    def run(self) -> BenchmarkReport:
        with self._ctx.deadline():
            repo = self.create_repository()
            prefix = generate_content_prefix(
                self._config.content_length, self._config.content_suffix_length
            )

            upload = self.run_phase(UPLOAD_PHASE, self._uploader(repo, prefix))
            self._logger.info(
                "Finished uploading files (failed_count=%d)",
                upload.failed,
                extra={"failed_count": upload.failed, "phase": UPLOAD_PHASE},
            )

            read = self.run_phase(READ_PHASE, self._reader(repo))
            self._logger.info(
                "Finished reading files (failed_count=%d)",
                read.failed,
                extra={"failed_count": read.failed, "phase": READ_PHASE},
            )

        return BenchmarkReport(repository=repo, upload=upload, read=read)

    def create_repository(self) -> str:
        repo = repository_name(self._config.run_name)
        self._logger.debug(
            "Create repository %s in storage namespace %s",
            repo,
            self._config.storage_namespace,
        )
        try:
            self._client.create_repository(
                name=repo,
                storage_namespace=self._config.storage_namespace,
                default_branch=self._config.branch,
            )
        except StorageServiceError as exc:
            raise SetupError(
                f"failed to create repository {repo!r}, "
                f"storage {self._config.storage_namespace!r}: {exc}"
            ) from exc
        return repo

    def run_phase(self, phase: str, operation) -> PhaseResult:
        pool = WorkerPool(
            workers=self._config.parallelism_level,
            retry_policy=self._ctx.retry_policy,
            cancel_event=self._ctx.cancel_event,
            phase=phase,
            logger=self._logger,
            action=PHASE_ACTIONS.get(phase),
        )
        return pool.run(self._config.files_amount, operation)

    def _uploader(self, repo: str, prefix: str):
        branch = self._config.branch
        suffix_length = self._config.content_suffix_length

        def upload(file_num: str) -> None:
            content = build_content(prefix, suffix_length)
            self._client.upload_object(repo, branch, file_num, content)

        return upload

    def _reader(self, repo: str):
        branch = self._config.branch

        def read(file_num: str) -> None:
            self._client.get_object(repo, branch, file_num)

        return read
