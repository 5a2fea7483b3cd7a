import threading
from unittest.mock import MagicMock

import pytest

from scan_classifier.config import Tenant
from scan_classifier.notifier import (
    BackgroundNotifier,
    NotificationError,
    TelegramNotifier,
    failure_message,
    new_file_message,
    success_message,
)

SEND_URL = "https://api.telegram.org/botTOKEN/sendMessage"


@pytest.fixture
def tenant():
    return Tenant(name="alice", telegram="@alice")


def test_send_posts_html_message(tenant, requests_mock):
    route = requests_mock.post(SEND_URL, json={"ok": True, "result": {}})

    TelegramNotifier("TOKEN").send(tenant, "<b>hi</b>")

    assert route.last_request.json() == {
        "chat_id": "@alice",
        "text": "<b>hi</b>",
        "parse_mode": "HTML",
    }


def test_send_raises_when_telegram_rejects(tenant, requests_mock):
    requests_mock.post(
        SEND_URL, status_code=400, json={"ok": False, "description": "chat not found"}
    )

    with pytest.raises(NotificationError, match="chat not found"):
        TelegramNotifier("TOKEN").send(tenant, "hi")


def test_send_requires_token_and_identity(tenant, requests_mock):
    with pytest.raises(NotificationError, match="Telegram token not set"):
        TelegramNotifier(None).send(tenant, "hi")
    with pytest.raises(NotificationError, match="Telegram user not set"):
        TelegramNotifier("TOKEN").send(Tenant(name="bob"), "hi")

    assert requests_mock.call_count == 0


def test_background_notifier_swallows_failures(tenant):
    sender = MagicMock()
    sender.send.side_effect = NotificationError("down")
    notifier = BackgroundNotifier(sender)

    notifier.notify(tenant, "first")
    notifier.notify(tenant, "second")
    notifier.close()

    assert [c.args[1] for c in sender.send.call_args_list] == ["first", "second"]
    sender.close.assert_called_once()


def test_background_notifier_does_not_wait_for_delivery(tenant):
    release = threading.Event()
    sender = MagicMock()
    sender.send.side_effect = lambda *args: release.wait(5)
    notifier = BackgroundNotifier(sender)

    notifier.notify(tenant, "slow")
    # notify returned while the send is still blocked
    assert not release.is_set()
    release.set()
    notifier.close()

    sender.send.assert_called_once_with(tenant, "slow")


def test_background_notifier_drops_messages_after_close(tenant):
    sender = MagicMock()
    notifier = BackgroundNotifier(sender)
    notifier.close()

    notifier.notify(tenant, "late")

    sender.send.assert_not_called()


def test_messages_escape_html():
    assert new_file_message("a<b>.pdf") == "<b>New file: <code>a&lt;b&gt;.pdf</code></b>"

    failure = failure_message("classifying", "scan.pdf", ValueError("bad <json>"), 1)
    assert "<pre>bad &lt;json&gt;</pre>" in failure
    assert failure.endswith("1 try left")
    assert failure_message("uploading", "scan.pdf", "x", 3).endswith("3 tries left")

    success = success_message("scan.pdf", "Tax & Co", "taxes", "https://c/f/1", "Nextcloud")
    assert "<b>Tax &amp; Co</b>" in success
    assert "Category: taxes" in success
    assert '<a href="https://c/f/1">Nextcloud</a>' in success
