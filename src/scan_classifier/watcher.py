"""
Drop Box Watcher
================

`WatchLoop` polls the FTP drop box and feeds new scans to the pipeline.

Each tick:

1. list the drop box root; every folder is a tenant, stray files are skipped
   with a warning;
2. scan all tenant folders concurrently, one task per tenant;
3. inside a tenant, run every file whose name was not known at the start of
   the tick through a `FileProcessor`, in listing order;
4. replace the tenant's `KnownSet` with exactly the files just listed.

A tenant's state (its `KnownSet` and its own FTP connection) is handed to the
tenant's task for the duration of a tick and handed back when the task
returns, so no two threads ever touch it. Nothing is persisted: the first
tick after start only records what is already there.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, Mapping, Protocol

import structlog

from .config import DaemonConfig, Settings, Tenant
from .daemon_loop import run_polling_loop
from .ftp import EntryKind, FtpClient, RemoteEntry, join_remote
from .storage.dispatcher import StoredFile

log = structlog.get_logger(__name__)


class Processor(Protocol):
    def process(self) -> StoredFile | None: ...


ProcessorFactory = Callable[[Tenant, RemoteEntry, str, FtpClient], Processor]


@dataclass(frozen=True)
class KnownSet:
    """File names (and their sizes) seen in a tenant folder during the last scan."""

    sizes: Mapping[str, int] = field(default_factory=dict)

    @classmethod
    def from_entries(cls, entries: Iterable[RemoteEntry]) -> KnownSet:
        return cls({e.name: e.size for e in entries if e.kind is EntryKind.FILE})

    def __contains__(self, name: object) -> bool:
        return name in self.sizes

    def __len__(self) -> int:
        return len(self.sizes)

    def names(self) -> set[str]:
        return set(self.sizes)

    def new_files(self, entries: Iterable[RemoteEntry]) -> list[RemoteEntry]:
        """Files in ``entries`` that are not known, in their original order."""
        return [e for e in entries if e.kind is EntryKind.FILE and e.name not in self.sizes]


@dataclass(frozen=True)
class TenantState:
    name: str
    # None until the first successful listing has been recorded as baseline
    known: KnownSet | None = None
    client: FtpClient | None = None


class WatchLoop:
    def __init__(
        self,
        settings: Settings,
        config: DaemonConfig,
        connect: Callable[[], FtpClient],
        processor_factory: ProcessorFactory,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.config = config
        self.connect = connect
        self.processor_factory = processor_factory
        self.sleep = sleep
        self._states: dict[str, TenantState] = {}
        self._started = False

    def run(self) -> None:
        """
        Connect and poll until interrupted.

        The initial connection, and the root listing on every tick, are not
        retried: their errors propagate to the caller.
        """
        log.info(
            "Watching FTP",
            host=self.config.ftp.host,
            user=self.config.ftp.username,
            path=self.config.ftp.path,
            poll_interval=self.settings.POLL_INTERVAL,
        )
        root = self.connect()
        try:
            run_polling_loop(
                daemon_name="watcher",
                tick=lambda: self.tick(root),
                poll_interval_seconds=self.settings.POLL_INTERVAL,
                sleep=self.sleep,
            )
        finally:
            root.close()
            self._close_states(self._states.values())
            self._states = {}

    def known_files(self, tenant_name: str) -> set[str] | None:
        state = self._states.get(tenant_name)
        if state is None or state.known is None:
            return None
        return state.known.names()

    def tick(self, root: FtpClient) -> None:
        entries = root.list(self.config.ftp.path)

        states: list[TenantState] = []
        previous = self._states
        self._states = {}
        for entry in entries:
            if entry.kind is not EntryKind.FOLDER:
                log.warning(
                    "Your FTP directory should only contain folders, check your printer configuration",
                    file=entry.name,
                )
                continue
            state = previous.pop(entry.name, None)
            if state is None:
                if entry.name not in self.config.tenants:
                    log.warning("Folder has no tenant configuration", tenant=entry.name)
                # Before the first tick everything present is baseline; later folders start empty
                state = TenantState(entry.name, known=None if not self._started else KnownSet())
            states.append(state)

        # Tenant folders that disappeared
        self._close_states(previous.values())

        self._states = self._scan_all(states)
        self._started = True

    def _scan_all(self, states: list[TenantState]) -> dict[str, TenantState]:
        if not states:
            return {}
        results: dict[str, TenantState] = {}
        # One thread per tenant
        with ThreadPoolExecutor(max_workers=len(states), thread_name_prefix="tenant") as executor:
            future_to_state = {executor.submit(self.scan_tenant, state): state for state in states}
            for future in as_completed(future_to_state):
                state = future_to_state[future]
                try:
                    results[state.name] = future.result()
                except Exception:
                    log.exception("Tenant scan failed", tenant=state.name)
                    results[state.name] = state
        return results

    def scan_tenant(self, state: TenantState) -> TenantState:
        """
        List one tenant folder and process its new files.

        Returns the state for the next tick. Listing or connection failures
        leave the known files untouched and drop the connection so the next
        tick reconnects.
        """
        tenant = self.config.tenant(state.name)
        folder = join_remote(self.config.ftp.path, state.name)

        client = state.client
        try:
            if client is None:
                client = self.connect()
            entries = client.list(folder)
        except Exception as e:
            # Includes UnicodeDecodeError for names that are not valid UTF-8
            log.error("Error listing FTP directory", tenant=state.name, path=folder, error=str(e))
            if client is not None:
                client.close()
            return replace(state, client=None)

        files = []
        for entry in entries:
            if entry.kind is EntryKind.FOLDER:
                log.warning(
                    "Tenant folders should only contain files", tenant=state.name, folder=entry.name
                )
                continue
            files.append(entry)

        if state.known is None:
            log.info("Recorded existing files", tenant=state.name, files=len(files))
            return TenantState(state.name, KnownSet.from_entries(files), client)

        for entry in state.known.new_files(files):
            remote_path = join_remote(folder, entry.name)
            try:
                self.processor_factory(tenant, entry, remote_path, client).process()
            except Exception:
                log.exception("Unexpected error processing file", tenant=state.name, file=entry.name)

        return TenantState(state.name, KnownSet.from_entries(files), client)

    @staticmethod
    def _close_states(states: Iterable[TenantState]) -> None:
        for state in states:
            if state.client is not None:
                state.client.close()
