"""
FTP Drop Box Client
===================

Scanners and printers upload into an FTP server laid out as one folder per
tenant:

    <root>/<tenant>/<scan>.pdf

`FtpClient` wraps ``ftplib`` with the three operations the watcher needs:
listing a directory into `RemoteEntry` values, asking for the current size of
a file and downloading a file to a local path. One client holds one control
connection and must only be used by one thread at a time.
"""

from __future__ import annotations

import enum
import ftplib
import posixpath
from dataclasses import dataclass
from pathlib import Path

import structlog

from .config import FtpConfig

log = structlog.get_logger(__name__)

# Errors that mean the remote side or the connection failed.
FTP_ERRORS = ftplib.all_errors

# Replies meaning the server cannot do MLSD (or its OPTS MLST handshake)
MLSD_UNSUPPORTED = ("500", "501", "502", "504")


class EntryKind(enum.Enum):
    FILE = "file"
    FOLDER = "folder"


@dataclass(frozen=True)
class RemoteEntry:
    name: str
    kind: EntryKind
    size: int = 0


class FtpClient:
    """A single FTP control connection."""

    def __init__(self, config: FtpConfig, timeout: float = 5):
        self.config = config
        self.timeout = timeout
        self._ftp: ftplib.FTP | None = None
        self._mlsd_supported = True

    def connect(self) -> FtpClient:
        """Open the connection and log in; errors propagate to the caller."""
        ftp = ftplib.FTP()
        ftp.connect(self.config.host, self.config.port, timeout=self.timeout)
        try:
            ftp.login(self.config.username, self.config.password)
        except FTP_ERRORS:
            ftp.close()
            raise
        self._ftp = ftp
        log.debug(
            "Connected to FTP",
            host=self.config.host,
            port=self.config.port,
            user=self.config.username,
        )
        return self

    def close(self) -> None:
        if self._ftp is None:
            return
        try:
            self._ftp.quit()
        except FTP_ERRORS + (UnicodeError,):
            self._ftp.close()
        finally:
            self._ftp = None

    def __enter__(self) -> FtpClient:
        return self.connect()

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def ftp(self) -> ftplib.FTP:
        if self._ftp is None:
            raise ConnectionError("FTP client is not connected")
        return self._ftp

    def list(self, path: str) -> list[RemoteEntry]:
        """
        List ``path``, returning files and folders in server order.

        MLSD is used when the server supports it; otherwise the Unix-style
        ``LIST`` output is parsed.
        """
        if self._mlsd_supported:
            try:
                return self._list_mlsd(path)
            except ftplib.error_perm as e:
                if not str(e).startswith(MLSD_UNSUPPORTED):
                    raise
                log.info("Server does not support MLSD; falling back to LIST")
                self._mlsd_supported = False
        return self._list_unix(path)

    def _list_mlsd(self, path: str) -> list[RemoteEntry]:
        entries = []
        for name, facts in self.ftp.mlsd(path, facts=["type", "size"]):
            kind = facts.get("type", "").lower()
            if kind == "dir":
                entries.append(RemoteEntry(name, EntryKind.FOLDER))
            elif kind == "file":
                entries.append(RemoteEntry(name, EntryKind.FILE, int(facts.get("size") or 0)))
            # cdir / pdir / OS-specific types are ignored
        return entries

    def _list_unix(self, path: str) -> list[RemoteEntry]:
        lines: list[str] = []
        self.ftp.retrlines(f"LIST {path}", lines.append)
        entries = []
        for line in lines:
            entry = parse_list_line(line)
            if entry is not None:
                entries.append(entry)
        return entries

    def size(self, path: str) -> int | None:
        """Return the current size of ``path``, or None if the server won't say."""
        try:
            self.ftp.voidcmd("TYPE I")
            return self.ftp.size(path)
        except ftplib.error_perm:
            return None

    def download(self, path: str, destination: Path) -> Path:
        """Download ``path`` in binary mode into ``destination``."""
        with open(destination, "wb") as fh:
            self.ftp.retrbinary(f"RETR {path}", fh.write)
        log.debug("Downloaded file", path=path, destination=str(destination))
        return destination


def join_remote(*parts: str) -> str:
    return posixpath.join(*parts)


def parse_list_line(line: str) -> RemoteEntry | None:
    """
    Parse one line of Unix ``ls -l`` style output.

    ``drwxr-xr-x 2 owner group 4096 Jan 01 12:00 name`` -> folder ``name``.
    Returns None for totals, ``.``/``..`` and lines that can't be parsed.
    """
    parts = line.split(None, 8)
    if len(parts) < 9:
        return None
    mode, size, name = parts[0], parts[4], parts[8]
    if name in (".", ".."):
        return None
    if mode.startswith("d"):
        return RemoteEntry(name, EntryKind.FOLDER)
    if mode.startswith("-"):
        try:
            return RemoteEntry(name, EntryKind.FILE, int(size))
        except ValueError:
            return None
    # Symlinks and device entries are not scans
    return None
