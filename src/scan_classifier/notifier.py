"""
Tenant Notifications
====================

Tenants are told about every new scan, every failed attempt and every filed
document through a Telegram bot. Messages use Telegram's HTML parse mode.

`TelegramNotifier` performs one blocking ``sendMessage`` call and raises on
failure. `BackgroundNotifier` is what the pipeline talks to: it hands messages
to a single background thread (keeping per-process order) and only logs
failures, so a broken bot never affects document processing.
"""

from __future__ import annotations

import html
from concurrent.futures import ThreadPoolExecutor

import requests
import structlog

from .config import Tenant

log = structlog.get_logger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


class NotificationError(Exception):
    """A notification could not be delivered."""


class TelegramNotifier:
    """Blocking client for the Telegram Bot API ``sendMessage`` method."""

    def __init__(self, token: str | None, timeout: float = 30, api_url: str = TELEGRAM_API_URL):
        self.token = token
        self.timeout = timeout
        self.api_url = api_url.rstrip("/")
        self._session = requests.Session()

    def close(self) -> None:
        self._session.close()

    def send(self, tenant: Tenant, message: str) -> None:
        if not self.token:
            raise NotificationError("Telegram token not set")
        if not tenant.telegram:
            raise NotificationError(f"Telegram user not set for tenant '{tenant.name}'")

        url = f"{self.api_url}/bot{self.token}/sendMessage"
        payload = {"chat_id": tenant.telegram, "text": message, "parse_mode": "HTML"}
        try:
            response = self._session.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise NotificationError(f"Error sending Telegram message: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code != 200 or not body.get("ok", False):
            description = body.get("description") or response.text
            raise NotificationError(
                f"Telegram rejected message ({response.status_code}): {description}"
            )
        log.info("Sent Telegram message", tenant=tenant.name)


class BackgroundNotifier:
    """
    Fire-and-forget wrapper around a blocking notifier.

    `notify` never raises and never waits for delivery; `close` waits for the
    queue to drain.
    """

    def __init__(self, sender: TelegramNotifier):
        self.sender = sender
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="notifier")

    def notify(self, tenant: Tenant, message: str) -> None:
        try:
            self._executor.submit(self._deliver, tenant, message)
        except RuntimeError:
            log.warning("Notifier is shut down; dropping message", tenant=tenant.name)

    def _deliver(self, tenant: Tenant, message: str) -> None:
        try:
            self.sender.send(tenant, message)
        except Exception as e:
            log.error("Error sending notification", tenant=tenant.name, error=str(e))

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self.sender.close()


def new_file_message(file_name: str) -> str:
    return f"<b>New file: <code>{html.escape(file_name)}</code></b>"


def failure_message(stage: str, file_name: str, error: object, attempts_left: int) -> str:
    tries = "1 try left" if attempts_left == 1 else f"{attempts_left} tries left"
    return (
        f"Error {html.escape(stage)} <code>{html.escape(file_name)}</code>: "
        f"<pre>{html.escape(str(error))}</pre>\n{tries}"
    )


def config_error_message(file_name: str, error: object) -> str:
    return (
        f"Could not store <code>{html.escape(file_name)}</code>: "
        f"<pre>{html.escape(str(error))}</pre>"
    )


def success_message(file_name: str, title: str, category: str, url: str, provider: str) -> str:
    return (
        f"Classified file: {html.escape(file_name)}\n\n"
        f"<b>{html.escape(title)}</b>\n\n"
        f"<blockquote><b>Category: {html.escape(category)}</b></blockquote>\n\n"
        f'You can download it from <a href="{html.escape(url, quote=True)}">'
        f"{html.escape(provider)}</a>"
    )
