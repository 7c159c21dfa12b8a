"""Versioned blob stores with conditional writes (get-with-version, put-if-version-matches)."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Protocol
from urllib.parse import quote, urlsplit, urlunsplit

import requests

from flowboard.server.errors import StoreUnavailable, VersionConflict
from flowboard.shared.settings import FlowboardSettings


class VersionedBlobStore(Protocol):
    """Store contract the config document relies on for optimistic concurrency.

    ``put`` with ``expected_version=None`` only succeeds when the blob does not
    exist yet. Implementations raise ``VersionConflict`` when the stored version
    differs from ``expected_version`` and ``StoreUnavailable`` on transport errors.
    """

    def get(self, name: str) -> tuple[bytes | None, str | None]: ...

    def put(self, name: str, data: bytes, expected_version: str | None) -> str: ...


class InMemoryBlobStore:
    """Thread-safe store used by tests and local dry runs."""

    def __init__(self) -> None:
        self._blobs: dict[str, tuple[bytes, int]] = {}
        self._lock = threading.Lock()
        self.put_count = 0
        self.unavailable = False

    def get(self, name: str) -> tuple[bytes | None, str | None]:
        self._check_available()
        with self._lock:
            entry = self._blobs.get(name)
        if entry is None:
            return None, None
        return entry[0], str(entry[1])

    def put(self, name: str, data: bytes, expected_version: str | None) -> str:
        self._check_available()
        with self._lock:
            current = self._blobs.get(name)
            current_version = str(current[1]) if current is not None else None
            if current_version != expected_version:
                raise VersionConflict(
                    f"Blob {name} is at version {current_version}, expected {expected_version}"
                )
            new_version = current[1] + 1 if current is not None else 1
            self._blobs[name] = (bytes(data), new_version)
            self.put_count += 1
            return str(new_version)

    def _check_available(self) -> None:
        if self.unavailable:
            raise StoreUnavailable("In-memory blob store is marked unavailable")


class SQLiteBlobStore:
    """Local-first store; compare-and-swap is a single guarded UPDATE."""

    def __init__(self, db_path: Path | str = ":memory:") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._configure_connection()
        self._init_schema()

    def _configure_connection(self) -> None:
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=5000")
        self.conn.execute("PRAGMA synchronous=NORMAL")

    def _init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS blobs (
                name TEXT PRIMARY KEY,
                content BLOB NOT NULL,
                version INTEGER NOT NULL,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        self.conn.commit()

    def get(self, name: str) -> tuple[bytes | None, str | None]:
        with self._lock:
            try:
                row = self.conn.execute(
                    "SELECT content, version FROM blobs WHERE name = ?", (name,)
                ).fetchone()
            except sqlite3.Error as exc:
                raise StoreUnavailable(f"SQLite read failed: {exc}") from exc
        if row is None:
            return None, None
        return bytes(row["content"]), str(row["version"])

    def put(self, name: str, data: bytes, expected_version: str | None) -> str:
        with self._lock:
            try:
                if expected_version is None:
                    return self._insert(name, data)
                return self._compare_and_swap(name, data, expected_version)
            except sqlite3.Error as exc:
                self.conn.rollback()
                raise StoreUnavailable(f"SQLite write failed: {exc}") from exc

    def _insert(self, name: str, data: bytes) -> str:
        try:
            self.conn.execute(
                "INSERT INTO blobs (name, content, version) VALUES (?, ?, 1)",
                (name, sqlite3.Binary(data)),
            )
        except sqlite3.IntegrityError as exc:
            self.conn.rollback()
            raise VersionConflict(f"Blob {name} was created by another writer") from exc
        self.conn.commit()
        return "1"

    def _compare_and_swap(self, name: str, data: bytes, expected_version: str) -> str:
        try:
            expected = int(expected_version)
        except ValueError as exc:
            raise VersionConflict(f"Unrecognized version token {expected_version!r}") from exc

        cursor = self.conn.execute(
            """
            UPDATE blobs
            SET content = ?, version = version + 1, updated_at = CURRENT_TIMESTAMP
            WHERE name = ? AND version = ?
            """,
            (sqlite3.Binary(data), name, expected),
        )
        if cursor.rowcount != 1:
            self.conn.rollback()
            raise VersionConflict(f"Blob {name} advanced past version {expected_version}")
        self.conn.commit()
        return str(expected + 1)

    def close(self) -> None:
        self.conn.close()


class HTTPBlobStore:
    """Object store reached over HTTP using ETag, If-Match, and If-None-Match.

    ``base_url`` is the container/bucket URL and may carry a signed query string.
    """

    def __init__(
        self,
        base_url: str,
        session: requests.Session | None = None,
        timeout_s: float = 5.0,
        put_headers: dict[str, str] | None = None,
    ) -> None:
        self.base_url = base_url
        self.session = session or requests.Session()
        self.timeout_s = timeout_s
        self.put_headers = dict(put_headers or {})

    def get(self, name: str) -> tuple[bytes | None, str | None]:
        response = self._send("GET", name, headers={})
        if response.status_code == 404:
            return None, None
        if response.status_code >= 400:
            raise StoreUnavailable(f"Blob store returned HTTP {response.status_code} for {name}")
        etag = (response.headers or {}).get("ETag")
        if not etag:
            raise StoreUnavailable(f"Blob store returned no ETag for {name}")
        return response.content, etag

    def put(self, name: str, data: bytes, expected_version: str | None) -> str:
        headers = {"Content-Type": "application/json", **self.put_headers}
        if expected_version is None:
            headers["If-None-Match"] = "*"
        else:
            headers["If-Match"] = expected_version

        response = self._send("PUT", name, headers=headers, data=data)
        if response.status_code in {409, 412}:
            raise VersionConflict(f"Blob {name} changed since version {expected_version}")
        if response.status_code >= 400:
            raise StoreUnavailable(f"Blob store returned HTTP {response.status_code} for {name}")
        etag = (response.headers or {}).get("ETag")
        if not etag:
            raise StoreUnavailable(f"Blob store returned no ETag after writing {name}")
        return etag

    def blob_url(self, name: str) -> str:
        parts = urlsplit(self.base_url)
        path = f"{parts.path.rstrip('/')}/{quote(name)}"
        return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))

    def _send(
        self,
        method: str,
        name: str,
        headers: dict[str, str],
        data: bytes | None = None,
    ) -> requests.Response:
        try:
            return self.session.request(
                method=method,
                url=self.blob_url(name),
                headers=headers,
                data=data,
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise StoreUnavailable(f"Blob store request failed: {exc}") from exc


def build_blob_store_from_env(
    settings: FlowboardSettings,
    session: requests.Session | None = None,
) -> VersionedBlobStore:
    backend = settings.store_backend
    if backend == "memory":
        return InMemoryBlobStore()
    if backend == "http":
        if not settings.blob_url:
            raise StoreUnavailable("FLOWBOARD_BLOB_URL is required for the http store")
        put_headers: dict[str, str] = {}
        if (urlsplit(settings.blob_url).hostname or "").endswith(".blob.core.windows.net"):
            put_headers["x-ms-blob-type"] = "BlockBlob"
        return HTTPBlobStore(
            settings.blob_url,
            session=session,
            timeout_s=settings.http_timeout_s,
            put_headers=put_headers,
        )
    if backend == "sqlite":
        return SQLiteBlobStore(settings.sqlite_path)
    raise ValueError(f"Unsupported store backend: {backend}")
