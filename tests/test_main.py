import json
import os

import pytest

from scan_classifier import main as main_module
from scan_classifier.classifier import Classification
from scan_classifier.ftp import EntryKind, RemoteEntry
from scan_classifier.ocr import ExtractionError
from scan_classifier.storage.token_store import TokenStore

DAEMON_YAML = """
ftp:
  host: ftp.example.com
  username: scanner
  password: secret
  path: /scans
telegram_token: bot-token
users:
  alice:
    telegram: 12345
    nextcloud:
      url: https://cloud.example.com/
      username: alice
      password: app-password
"""


@pytest.fixture(autouse=True)
def quiet_startup(mocker):
    mocker.patch("scan_classifier.main.load_dotenv")
    mocker.patch("scan_classifier.main.configure_logging")


def test_main_configuration_error(mocker):
    mocker.patch.dict(os.environ, {}, clear=True)

    assert main_module.main(["classify", "scan.pdf"]) == 1


def test_main_without_command(settings, capsys):
    assert main_module.main([]) == 1
    assert "usage: scan-classifier" in capsys.readouterr().err


def test_main_classify_prints_json(settings, mocker, capsys):
    classify_file = mocker.patch(
        "scan_classifier.main.classify_file",
        return_value={"title": "Rechnung", "category": "misc", "explanation": "x", "filename": "rechnung.pdf"},
    )

    assert main_module.main(["c", "scan.pdf", "--lang", "eng"]) == 0

    assert classify_file.call_args.args[1:] == ("scan.pdf", "eng")
    assert json.loads(capsys.readouterr().out)["title"] == "Rechnung"


def test_main_classify_failure(settings, mocker):
    mocker.patch("scan_classifier.main.classify_file", side_effect=ExtractionError("no text"))

    assert main_module.main(["classify", "scan.pdf"]) == 1


def test_classify_file_leaves_input_untouched(settings, mocker, tmp_path):
    scan = tmp_path / "scan.pdf"
    scan.write_bytes(b"%PDF-1.4")
    extract = mocker.patch("scan_classifier.main.TextExtractor.extract", return_value="Rechnung")
    mocker.patch(
        "scan_classifier.main.ClassificationProvider.classify_text",
        return_value=Classification("Rechnung", "misc", "An invoice", "rechnung.pdf"),
    )

    result = main_module.classify_file(settings, str(scan), None)

    assert result["filename"] == "rechnung.pdf"
    copied = extract.call_args.args[0]
    assert copied != scan
    assert copied.name == "scan.pdf"
    assert not copied.exists()
    assert scan.read_bytes() == b"%PDF-1.4"


def test_main_token_saves_refresh_token(settings):
    assert main_module.main(["token", "alice@example.com", "refresh-1"]) == 0

    assert TokenStore(settings.TOKEN_DB).get("alice@example.com").refresh_token == "refresh-1"


@pytest.fixture
def daemon_config(tmp_path):
    path = tmp_path / "daemon.yml"
    path.write_text(DAEMON_YAML, encoding="utf-8")
    return path


def test_main_daemon_runs_watch_loop(settings, mocker, daemon_config):
    watch_loop = mocker.patch("scan_classifier.main.WatchLoop")

    assert main_module.main(["--daemon", "--config", str(daemon_config)]) == 0

    watch_loop.return_value.run.assert_called_once()
    _, config, _, _ = watch_loop.call_args.args
    assert config.tenants["alice"].telegram == "12345"
    assert config.telegram_token == "bot-token"


def test_main_daemon_connection_error(settings, mocker, daemon_config):
    watch_loop = mocker.patch("scan_classifier.main.WatchLoop")
    watch_loop.return_value.run.side_effect = ConnectionRefusedError("refused")

    assert main_module.main(["-d", "--config", str(daemon_config)]) == 1


def test_main_daemon_missing_config(settings, tmp_path):
    assert main_module.main(["--daemon", "--config", str(tmp_path / "missing.yml")]) == 1


def test_main_daemon_processor_factory(settings, mocker, daemon_config):
    watch_loop = mocker.patch("scan_classifier.main.WatchLoop")
    main_module.main(["--daemon", "--config", str(daemon_config)])
    _, config, connect, make_processor = watch_loop.call_args.args

    ftp_client = mocker.patch("scan_classifier.main.FtpClient")
    connect()
    ftp_client.assert_called_once_with(config.ftp, timeout=settings.FTP_TIMEOUT)
    ftp_client.return_value.connect.assert_called_once()

    tenant = config.tenant("alice")
    entry = RemoteEntry("a.pdf", EntryKind.FILE, 1)
    processor = make_processor(tenant, entry, "/scans/alice/a.pdf", mocker.sentinel.client)
    assert processor.tenant is tenant
    assert processor.remote_path == "/scans/alice/a.pdf"
    assert processor.ftp_client is mocker.sentinel.client


def test_main_classify_uses_configured_categories(settings, mocker, tmp_path):
    path = tmp_path / "daemon.yml"
    path.write_text(DAEMON_YAML + "categories:\n  invoices: Bills and invoices\n", encoding="utf-8")
    classify_file = mocker.patch("scan_classifier.main.classify_file", return_value={})

    assert main_module.main(["--config", str(path), "classify", "scan.pdf"]) == 0

    assert classify_file.call_args.kwargs["categories"] == {"invoices": "Bills and invoices"}


def test_main_classify_without_config_file_uses_defaults(settings, mocker, tmp_path):
    classify_file = mocker.patch("scan_classifier.main.classify_file", return_value={})

    assert main_module.main(["--config", str(tmp_path / "missing.yml"), "classify", "scan.pdf"]) == 0

    assert classify_file.call_args.kwargs["categories"] is None


def test_main_classify_invalid_config_file(settings, mocker, tmp_path):
    path = tmp_path / "daemon.yml"
    path.write_text("ftp: [unclosed", encoding="utf-8")
    classify_file = mocker.patch("scan_classifier.main.classify_file")

    assert main_module.main(["--config", str(path), "classify", "scan.pdf"]) == 1

    classify_file.assert_not_called()


def test_classify_file_prompts_with_given_categories(settings, mocker, tmp_path):
    scan = tmp_path / "scan.pdf"
    scan.write_bytes(b"%PDF-1.4")
    mocker.patch("scan_classifier.main.TextExtractor.extract", return_value="Rechnung")
    provider = mocker.patch("scan_classifier.main.ClassificationProvider")
    provider.return_value.classify_text.return_value = Classification(
        "Rechnung", "invoices", "An invoice", "rechnung.pdf"
    )

    main_module.classify_file(settings, str(scan), None, categories={"invoices": "Bills"})

    provider.assert_called_once_with(settings, {"invoices": "Bills"})
