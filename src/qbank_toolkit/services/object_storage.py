"""MinIO object storage adapter for page previews and diagram crops."""

from __future__ import annotations

import base64
import binascii
import io
import logging
import secrets
import time
from typing import Any, Optional

import urllib3
from minio import Minio
from minio.error import S3Error

from qbank_toolkit.ingestion.errors import StorageError

from .base import ObjectStorage

logger = logging.getLogger(__name__)

IMAGES_PREFIX = "images"
DIAGRAMS_PREFIX = "diagrams"


def generate_unique_filename(extension: str = "jpg", prefix: str = IMAGES_PREFIX) -> str:
    """
    Object key of the form ``{prefix}/{timestamp_ms}_{random}.{ext}``.

    Example:
        >>> generate_unique_filename("jpg", "diagrams")  # doctest: +SKIP
        'diagrams/1718000000000_k3j9x2.jpg'
    """
    stamp = int(time.time() * 1000)
    token = secrets.token_hex(4)
    return f"{prefix}/{stamp}_{token}.{extension.lstrip('.')}"


def decode_base64_image(data: str) -> bytes:
    """Decode base64 image data, stripping a ``data:...;base64,`` prefix if present."""
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=False)
    except (binascii.Error, ValueError) as e:
        raise StorageError(f"Invalid base64 image data: {e}") from e


class MinioObjectStorage(ObjectStorage):
    """Uploads images to a MinIO/S3 bucket and returns their public URL."""

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        bucket: str,
        secure: bool = False,
        public_url: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        """
        Args:
            endpoint: S3 endpoint (e.g. "localhost:9000")
            access_key: S3 access key
            secret_key: S3 secret key
            bucket: Bucket name
            secure: Use HTTPS
            public_url: Base URL objects are served from; defaults to the endpoint
            client: Pre-built Minio client (tests inject a fake here)
        """
        self.bucket = bucket
        self.endpoint = endpoint
        scheme = "https" if secure else "http"
        self.public_url = (public_url or f"{scheme}://{endpoint}").rstrip("/")
        self.client = client or Minio(
            endpoint,
            access_key=access_key,
            secret_key=secret_key,
            secure=secure,
        )
        logger.info(f"Object storage initialized: endpoint={endpoint}, bucket={bucket}")

    def upload(self, base64_image: str, filename: str) -> str:
        payload = decode_base64_image(base64_image)
        if not payload:
            raise StorageError(f"Empty image payload for {filename}")
        try:
            self.client.put_object(
                self.bucket,
                filename,
                io.BytesIO(payload),
                length=len(payload),
                content_type="image/jpeg",
            )
        except S3Error as e:
            logger.error(f"S3 error uploading {filename}: {e}")
            raise StorageError(f"Upload failed for {filename}: {e}") from e
        except (urllib3.exceptions.HTTPError, OSError) as e:
            logger.error(f"Transport error uploading {filename}: {e}")
            raise StorageError(f"Upload failed for {filename}: {e}") from e
        url = f"{self.public_url}/{self.bucket}/{filename}"
        logger.debug(f"Uploaded {filename} ({len(payload)} bytes)")
        return url
