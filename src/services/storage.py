"""
Object storage backends for attachments.

ObjectStorage is the interface the attachment pipeline talks to. The
Supabase backend speaks the storage REST API over requests; the in-memory
backend keeps objects in a dict and is used for development and tests.
"""

from abc import ABC, abstractmethod
from urllib.parse import quote
import logging
import secrets
import threading
import time

import requests

logger = logging.getLogger("marketplace_messaging")


class StorageError(Exception):
    pass


class ObjectStorage(ABC):
    @abstractmethod
    def upload(self, bucket: str, path: str, content: bytes, content_type: str) -> None:
        pass

    @abstractmethod
    def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str:
        pass

    @abstractmethod
    def remove(self, bucket: str, path: str) -> None:
        pass


class SupabaseObjectStorage(ObjectStorage):
    def __init__(self, base_url: str, service_key: str, timeout: float = 10):
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout

    def _headers(self, extra: dict = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
        }
        if extra:
            headers.update(extra)
        return headers

    def _object_url(self, *parts: str) -> str:
        return f"{self.base_url}/storage/v1/object/" + "/".join(
            quote(p, safe="/") for p in parts
        )

    def upload(self, bucket: str, path: str, content: bytes, content_type: str) -> None:
        try:
            response = requests.post(
                self._object_url(bucket, path),
                data=content,
                headers=self._headers(
                    {
                        "Content-Type": content_type,
                        "Cache-Control": "3600",
                        "x-upsert": "false",
                    }
                ),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise StorageError(f"upload of {bucket}/{path} failed: {e}") from e

    def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str:
        try:
            response = requests.post(
                self._object_url("sign", bucket, path),
                json={"expiresIn": ttl_seconds},
                headers=self._headers({"Content-Type": "application/json"}),
                timeout=self.timeout,
            )
            response.raise_for_status()
            signed_path = response.json().get("signedURL")
        except (requests.RequestException, ValueError) as e:
            raise StorageError(f"signing {bucket}/{path} failed: {e}") from e

        if not signed_path:
            raise StorageError(f"signing {bucket}/{path} returned no url")
        return f"{self.base_url}/storage/v1{signed_path}"

    def remove(self, bucket: str, path: str) -> None:
        try:
            response = requests.delete(
                f"{self.base_url}/storage/v1/object/{quote(bucket)}",
                json={"prefixes": [path]},
                headers=self._headers({"Content-Type": "application/json"}),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise StorageError(f"removing {bucket}/{path} failed: {e}") from e


class InMemoryObjectStorage(ObjectStorage):
    def __init__(self):
        self._objects = {}
        self._lock = threading.Lock()

    def upload(self, bucket: str, path: str, content: bytes, content_type: str) -> None:
        with self._lock:
            if (bucket, path) in self._objects:
                raise StorageError(f"object already exists: {bucket}/{path}")
            self._objects[(bucket, path)] = (bytes(content), content_type)

    def create_signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str:
        with self._lock:
            if (bucket, path) not in self._objects:
                raise StorageError(f"object not found: {bucket}/{path}")
        expires = int(time.time()) + ttl_seconds
        token = secrets.token_urlsafe(16)
        return f"memory://{bucket}/{path}?token={token}&expires={expires}"

    def remove(self, bucket: str, path: str) -> None:
        with self._lock:
            self._objects.pop((bucket, path), None)

    def get(self, bucket: str, path: str) -> tuple[bytes, str]:
        with self._lock:
            try:
                return self._objects[(bucket, path)]
            except KeyError:
                raise StorageError(f"object not found: {bucket}/{path}")

    def __len__(self) -> int:
        return len(self._objects)
