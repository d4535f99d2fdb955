"""
Blob storage for work-order photos, signatures and receipts.

Objects are addressed by ``(bucket, key)``; keys are namespaced by company and
work order by the callers. Public URLs point at the ``/files`` route served by
the application itself.
"""
from __future__ import annotations

from pathlib import Path
from urllib.parse import quote, unquote, urlparse

from flask import Flask, current_app

PHOTOS_BUCKET = "work-order-photos"
SIGNATURES_BUCKET = "work-order-signatures"
REMITOS_BUCKET = "remitos"
BUCKETS = {PHOTOS_BUCKET, SIGNATURES_BUCKET, REMITOS_BUCKET}


class StorageError(Exception):
    pass


class LocalBlobStorage:
    """Filesystem-backed object store with public URL resolution."""

    def __init__(self, root: str | Path, public_base_url: str = ""):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, bucket: str, key: str) -> Path:
        if bucket not in BUCKETS:
            raise StorageError(f"Bucket desconocido: {bucket}")
        clean_key = key.replace("\\", "/").lstrip("/")
        parts = [part for part in clean_key.split("/") if part not in {"", ".", ".."}]
        if not parts:
            raise StorageError("Ruta de objeto vacia")
        return self.root / bucket / Path(*parts)

    def upload(self, bucket: str, key: str, data: bytes, upsert: bool = False) -> str:
        path = self._path(bucket, key)
        if path.exists() and not upsert:
            raise StorageError(f"El objeto ya existe: {bucket}/{key}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise StorageError(str(exc)) from exc
        return key

    def exists(self, bucket: str, key: str) -> bool:
        return self._path(bucket, key).exists()

    def read(self, bucket: str, key: str) -> bytes:
        path = self._path(bucket, key)
        if not path.exists():
            raise StorageError(f"Objeto no encontrado: {bucket}/{key}")
        return path.read_bytes()

    def delete(self, bucket: str, key: str) -> None:
        path = self._path(bucket, key)
        if path.exists():
            path.unlink()

    def local_path(self, bucket: str, key: str) -> Path:
        return self._path(bucket, key)

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.public_base_url}/files/{bucket}/{quote(key.lstrip('/'))}"

    def resolve_public_url(self, url: str) -> tuple[str, str] | None:
        path = urlparse(url or "").path
        marker = "/files/"
        if marker not in path:
            return None
        remainder = path.split(marker, 1)[1]
        bucket, _, key = remainder.partition("/")
        if bucket not in BUCKETS or not key:
            return None
        return bucket, unquote(key)


def init_storage(app: Flask) -> LocalBlobStorage:
    root = app.config.get("STORAGE_ROOT") or str(Path(app.instance_path) / "storage")
    storage = LocalBlobStorage(root, app.config.get("PUBLIC_BASE_URL", ""))
    app.extensions["blob_storage"] = storage
    return storage


def get_storage() -> LocalBlobStorage:
    return current_app.extensions["blob_storage"]
