# Overview: Object-store adapter for product and promotion images (GCS via its S3-compatible API).

"""
Image storage.

Objects are addressed publicly as https://storage.googleapis.com/<bucket>/<path>.
Uploads go through boto3 against the interoperability endpoint, external
image URLs are fetched with httpx before being re-hosted.

Deletion is idempotent: a missing object counts as deleted.
"""

from __future__ import annotations

import ipaddress
import logging
import mimetypes
import re
import socket
import time
import uuid
from urllib.parse import urlparse

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app


logger = logging.getLogger(__name__)

PUBLIC_HOST = "https://storage.googleapis.com"
MAX_IMAGE_BYTES = 10 * 1024 * 1024

_MISSING_OBJECT_CODES = {"NoSuchKey", "NotFound", "404"}
_FILENAME_UNSAFE = re.compile(r"[^a-zA-Z0-9._-]")


class StorageError(Exception):
    """Object-store operation failed."""


class ImageDownloadError(StorageError):
    """A source image could not be fetched or is not an image."""


def extract_object_path(url: str) -> str:
    """
    Strip scheme, host and bucket from a public object URL.

    https://storage.googleapis.com/my-bucket/products/a.jpg -> products/a.jpg
    """
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise StorageError("invalid URL")
    parts = parsed.path.lstrip("/").split("/", 1)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise StorageError("invalid URL format")
    return parts[1]


def sanitize_filename(filename: str) -> str:
    sanitized = _FILENAME_UNSAFE.sub("_", filename or "")[:100]
    if sanitized in ("", ".", ".."):
        return "file"
    return sanitized


def _is_private_ip(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_unspecified
        or ip.is_reserved
        or ip.is_multicast
    )


def validate_external_url(raw_url: str) -> None:
    """Refuse non-http(s) schemes and hosts that resolve to private or loopback addresses."""
    parsed = urlparse(raw_url)
    if parsed.scheme not in ("http", "https"):
        raise ImageDownloadError(f"URL scheme '{parsed.scheme}' is not allowed")

    host = parsed.hostname
    if not host:
        raise ImageDownloadError("URL has no hostname")
    if host.lower() == "localhost":
        raise ImageDownloadError("requests to localhost are not allowed")

    try:
        addresses = [ipaddress.ip_address(host)]
    except ValueError:
        try:
            infos = socket.getaddrinfo(host, None)
        except socket.gaierror as exc:
            raise ImageDownloadError(f"failed to resolve hostname '{host}'") from exc
        addresses = [ipaddress.ip_address(info[4][0]) for info in infos]

    for ip in addresses:
        if _is_private_ip(ip):
            raise ImageDownloadError(f"URL resolves to a private address {ip}")


class ObjectStorage:
    """Bucket-bound storage adapter. One instance per app, shared across threads."""

    def __init__(
        self,
        bucket: str,
        *,
        endpoint_url: str = PUBLIC_HOST,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        region: str = "auto",
        download_timeout: float = 30.0,
        client=None,
        http_transport: httpx.BaseTransport | None = None,
    ):
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.download_timeout = download_timeout
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._region = region
        self._client = client
        self._http_transport = http_transport

    @classmethod
    def from_config(cls, config) -> "ObjectStorage":
        return cls(
            config.get("STORAGE_BUCKET", ""),
            endpoint_url=config.get("STORAGE_ENDPOINT_URL", PUBLIC_HOST),
            access_key_id=config.get("STORAGE_ACCESS_KEY_ID"),
            secret_access_key=config.get("STORAGE_SECRET_ACCESS_KEY"),
            region=config.get("STORAGE_REGION", "auto"),
            download_timeout=config.get("IMAGE_DOWNLOAD_TIMEOUT", 30.0),
        )

    @property
    def client(self):
        # boto3 clients are thread-safe once built; build lazily so tests never need credentials
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                aws_access_key_id=self._access_key_id,
                aws_secret_access_key=self._secret_access_key,
                region_name=self._region,
            )
        return self._client

    def public_url(self, object_path: str) -> str:
        return f"{PUBLIC_HOST}/{self.bucket}/{object_path}"

    def is_managed_url(self, url: str) -> bool:
        return bool(self.bucket) and url.startswith(f"{PUBLIC_HOST}/{self.bucket}/")

    def _put(self, object_path: str, body, content_type: str) -> str:
        if not self.bucket:
            raise StorageError("STORAGE_BUCKET not set")
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=object_path,
                Body=body,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"failed to upload {object_path}") from exc
        return self.public_url(object_path)

    def upload(self, stream, filename: str, content_type: str, *, folder: str = "products") -> str:
        object_path = f"{folder}/{int(time.time())}_{sanitize_filename(filename)}"
        return self._put(object_path, stream.read(), content_type)

    def delete(self, object_path: str) -> None:
        if not self.bucket:
            raise StorageError("STORAGE_BUCKET not set")
        try:
            self.client.delete_object(Bucket=self.bucket, Key=object_path)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_OBJECT_CODES:
                logger.info("Object %s already absent from bucket %s", object_path, self.bucket)
                return
            raise StorageError(f"failed to delete object {object_path}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"failed to delete object {object_path}") from exc
        logger.info("Deleted object %s from bucket %s", object_path, self.bucket)

    def delete_url(self, url: str) -> None:
        self.delete(extract_object_path(url))

    def download_and_upload(self, source_url: str, product_id) -> str:
        """Fetch an external image and re-host it under products/<product_id>_<8 hex>.<ext>."""
        validate_external_url(source_url)

        try:
            with httpx.Client(
                timeout=self.download_timeout,
                follow_redirects=False,
                transport=self._http_transport,
            ) as http:
                response = http.get(source_url)
        except httpx.HTTPError as exc:
            raise ImageDownloadError(f"failed to download image from {source_url}") from exc

        if response.status_code != 200:
            raise ImageDownloadError(f"failed to download image: HTTP {response.status_code}")

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if not content_type:
            raise ImageDownloadError(f"no content-type header returned from {source_url}")
        if not content_type.startswith("image/"):
            raise ImageDownloadError(
                f"URL {source_url} returned non-image content-type: {content_type}"
            )

        body = response.content
        if len(body) > MAX_IMAGE_BYTES:
            raise ImageDownloadError(f"image at {source_url} exceeds {MAX_IMAGE_BYTES} bytes")

        ext = mimetypes.guess_extension(content_type) or ".jpg"
        if ext == ".jpe":
            ext = ".jpg"
        object_path = f"products/{sanitize_filename(str(product_id))}_{uuid.uuid4().hex[:8]}{ext}"
        return self._put(object_path, body, content_type)


def init_storage(app) -> None:
    """Install the app-wide adapter unless one was injected (tests)."""
    if "object_storage" not in app.extensions:
        app.extensions["object_storage"] = ObjectStorage.from_config(app.config)


def get_storage() -> ObjectStorage:
    return current_app.extensions["object_storage"]
