"""
AI Scan Classifier
==================

Command line entry point.

``scan-classifier classify FILE [--lang deu]``
    OCR and classify a single local file and print the classification as JSON.
    Custom categories from the daemon config file are used when it exists.

``scan-classifier --daemon``
    Watch the FTP drop box described in ``CONFIG_FILE`` (``daemon.yml``) and
    file every new scan into the owning tenant's cloud storage.

``scan-classifier token EMAIL REFRESH_TOKEN``
    Store a Google Drive refresh token for a tenant's Google account.

Process settings come from the environment (and a ``.env`` file when
present). The exit code is 1 for configuration errors, fatal connection
errors and failed commands, 0 otherwise.
"""

from __future__ import annotations

import argparse
import json
import shutil
import sys
from pathlib import Path

import structlog
from dotenv import load_dotenv

from .classifier import ClassificationError, ClassificationProvider
from .config import DaemonConfig, Settings, Tenant, setup_libraries
from .ftp import FTP_ERRORS, FtpClient, RemoteEntry
from .logging_config import configure_logging
from .notifier import BackgroundNotifier, TelegramNotifier
from .ocr import ExtractionError, TextExtractor
from .storage.dispatcher import StorageDispatcher
from .storage.token_store import TokenStore
from .utils import scratch_directory
from .watcher import WatchLoop
from .worker import FileProcessor

LOG_LEVELS = {"debug": "DEBUG", "info": "INFO", "warn": "WARNING", "error": "ERROR"}
LOG_STYLES = {"plain": "console", "json": "json"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scan-classifier",
        description="Classify the content of scanned documents and file them into cloud storage",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--log-style", choices=sorted(LOG_STYLES), help="The log style to use")
    parser.add_argument("--log-level", choices=list(LOG_LEVELS), help="The log level to use")
    parser.add_argument("-d", "--daemon", action="store_true", help="Run the app as a daemon")
    parser.add_argument("--config", help="Daemon YAML config file (overrides CONFIG_FILE)")

    subparsers = parser.add_subparsers(dest="command")

    classify = subparsers.add_parser("classify", aliases=["c"], help="Classify the content of a scanned document")
    classify.add_argument("file", help="The scanned document")
    classify.add_argument("-l", "--lang", help="The language of the document (default: OCR_LANGUAGE)")

    token = subparsers.add_parser("token", help="Store a Google Drive refresh token")
    token.add_argument("email", help="Google account e-mail of the tenant")
    token.add_argument("refresh_token", help="OAuth refresh token")
    return parser


def _apply_log_flags(settings: Settings, args: argparse.Namespace) -> None:
    if args.log_style:
        settings.LOG_FORMAT = LOG_STYLES[args.log_style]
    if args.log_level:
        settings.LOG_LEVEL = LOG_LEVELS[args.log_level]
    if args.verbose:
        settings.LOG_LEVEL = "DEBUG"


def load_categories(settings: Settings, config_path: str) -> dict[str, str] | None:
    """Categories from the daemon config file, or None when there is no such file."""
    if not Path(config_path).exists():
        return None
    return DaemonConfig.load(config_path, settings).categories


def classify_file(
    settings: Settings,
    path: str,
    language: str | None,
    categories: dict[str, str] | None = None,
) -> dict:
    """OCR and classify ``path``; the input file is left untouched."""
    source = Path(path)
    extractor = TextExtractor(settings)
    classifier = ClassificationProvider(settings, categories)
    with scratch_directory() as workdir:
        local_copy = workdir / source.name
        shutil.copyfile(source, local_copy)
        text = extractor.extract(local_copy, language)
        return classifier.classify_text(text).to_dict()


def run_daemon(settings: Settings, config_path: str) -> int:
    log = structlog.get_logger(__name__)
    try:
        config = DaemonConfig.load(config_path, settings)
    except ValueError as e:
        log.error("Configuration error", error=str(e))
        return 1

    extractor = TextExtractor(settings)
    classifier = ClassificationProvider(settings, config.categories)
    dispatcher = StorageDispatcher(settings, TokenStore(settings.TOKEN_DB))
    notifier = BackgroundNotifier(TelegramNotifier(config.telegram_token))

    def connect() -> FtpClient:
        return FtpClient(config.ftp, timeout=settings.FTP_TIMEOUT).connect()

    def make_processor(tenant: Tenant, entry: RemoteEntry, remote_path: str, client: FtpClient) -> FileProcessor:
        return FileProcessor(
            tenant,
            entry,
            remote_path,
            client,
            extractor,
            classifier,
            dispatcher,
            notifier,
            settings,
        )

    loop = WatchLoop(settings, config, connect, make_processor)
    try:
        loop.run()
    except FTP_ERRORS as e:
        log.error("Error connecting to FTP", host=config.ftp.host, error=str(e))
        return 1
    finally:
        notifier.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    log = structlog.get_logger(__name__)

    load_dotenv()
    try:
        settings = Settings()
        _apply_log_flags(settings, args)
        configure_logging(settings)
        setup_libraries(settings)
    except ValueError as e:
        log.error("Configuration error", error=str(e))
        return 1

    if args.daemon:
        log.info("Running as daemon")
        return run_daemon(settings, args.config or settings.CONFIG_FILE)

    if args.command in ("classify", "c"):
        try:
            categories = load_categories(settings, args.config or settings.CONFIG_FILE)
        except ValueError as e:
            log.error("Configuration error", error=str(e))
            return 1
        try:
            result = classify_file(settings, args.file, args.lang, categories=categories)
        except (OSError, ExtractionError, ClassificationError) as e:
            log.error("Error classifying file", file=args.file, error=str(e))
            return 1
        print(json.dumps(result, ensure_ascii=False, indent=2))
        return 0

    if args.command == "token":
        TokenStore(settings.TOKEN_DB).save(args.email, args.refresh_token)
        return 0

    log.error("No file provided")
    parser.print_usage(sys.stderr)
    return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
