"""
Scan Processing Worker
======================

This module defines `FileProcessor`, which takes one newly observed scan from
a tenant's FTP folder through the whole pipeline:

    download -> OCR -> classify -> upload -> notify

Each attempt runs in its own scratch directory and starts again from the
download; there is no resuming from a half-finished attempt. After every
failed attempt the tenant is told what went wrong and how many tries are left.
When the attempts run out the scan is abandoned. A storage configuration
problem abandons it straight away since retrying cannot fix it.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable

import structlog

from .classifier import Classification, ClassificationProvider
from .config import Settings, Tenant
from .ftp import FtpClient, RemoteEntry
from .notifier import (
    BackgroundNotifier,
    config_error_message,
    failure_message,
    new_file_message,
    success_message,
)
from .ocr import TextExtractor
from .storage.base import StorageConfigError
from .storage.dispatcher import StorageDispatcher, StoredFile
from .utils import RetriesExhausted, run_with_retries, scratch_directory

log = structlog.get_logger(__name__)

DOWNLOADING = "downloading"
EXTRACTING = "extracting text from"
CLASSIFYING = "classifying"
UPLOADING = "uploading"


class StageError(Exception):
    """One step of an attempt failed."""

    def __init__(self, stage: str, error: Exception):
        super().__init__(f"{stage}: {error}")
        self.stage = stage
        self.error = error


class FileProcessor:
    """
    Runs the pipeline for a single scan of a single tenant.
    """

    def __init__(
        self,
        tenant: Tenant,
        entry: RemoteEntry,
        remote_path: str,
        ftp_client: FtpClient,
        extractor: TextExtractor,
        classifier: ClassificationProvider,
        dispatcher: StorageDispatcher,
        notifier: BackgroundNotifier,
        settings: Settings,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.tenant = tenant
        self.entry = entry
        self.remote_path = remote_path
        self.ftp_client = ftp_client
        self.extractor = extractor
        self.classifier = classifier
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.settings = settings
        self.sleep = sleep
        self.log = log.bind(tenant=tenant.name, file=entry.name)

    def process(self) -> StoredFile | None:
        """
        Process the scan; return where it was stored, or None if abandoned.
        """
        self.log.info("New file", size=self.entry.size)
        self._notify(new_file_message(self.entry.name))

        try:
            classification, stored = run_with_retries(
                self._attempt,
                max_attempts=self.settings.MAX_ATTEMPTS,
                delay_seconds=self.settings.RETRY_DELAY,
                retryable_exceptions=(StageError,),
                on_failure=self._on_failure,
                sleep=self.sleep,
            )
        except RetriesExhausted as e:
            self.log.error("Giving up on file", attempts=e.attempts, error=str(e.last_error))
            return None
        except StorageConfigError as e:
            self.log.error("Storage is not configured correctly; giving up on file", error=str(e))
            self._notify(config_error_message(self.entry.name, e))
            return None

        self._notify(
            success_message(
                self.entry.name,
                classification.title,
                classification.category,
                stored.locator,
                stored.provider,
            )
        )
        return stored

    def _attempt(self, attempt: int) -> tuple[Classification, StoredFile]:
        self.log.info("Processing file", attempt=attempt, max_attempts=self.settings.MAX_ATTEMPTS)
        with scratch_directory() as workdir:
            local_path = self._stage(DOWNLOADING, self._download, workdir)
            text = self._stage(EXTRACTING, self.extractor.extract, local_path, self.settings.OCR_LANGUAGE)
            classification = self._stage(CLASSIFYING, self.classifier.classify_text, text)
            stored = self._stage(UPLOADING, self.dispatcher.upload, self.tenant, classification, local_path)
        return classification, stored

    def _stage(self, stage: str, func, *args):
        try:
            return func(*args)
        except StorageConfigError:
            raise
        except Exception as e:
            self.log.exception("Pipeline step failed", stage=stage)
            raise StageError(stage, e) from e

    def _download(self, workdir: Path) -> Path:
        current_size = self.ftp_client.size(self.remote_path)
        if current_size is not None and current_size != self.entry.size:
            # Best effort only: a writer that pauses longer than this is still read partially
            self.log.warning(
                "File size changed since listing; waiting for upload to settle",
                listed_size=self.entry.size,
                current_size=current_size,
                settle_delay=self.settings.SETTLE_DELAY,
            )
            self.sleep(self.settings.SETTLE_DELAY)
        destination = workdir / Path(self.entry.name).name
        return self.ftp_client.download(self.remote_path, destination)

    def _on_failure(self, attempt: int, error: Exception) -> None:
        stage = error.stage if isinstance(error, StageError) else "processing"
        cause = error.error if isinstance(error, StageError) else error
        attempts_left = self.settings.MAX_ATTEMPTS - attempt
        self._notify(failure_message(stage, self.entry.name, cause, attempts_left))

    def _notify(self, message: str) -> None:
        try:
            self.notifier.notify(self.tenant, message)
        except Exception:
            self.log.exception("Error queueing notification")
