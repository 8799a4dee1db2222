"""
Module: ingestion.upload_queue

Purpose:
    Bounded-concurrency upload queue for page previews. Uploads run in a
    small thread pool purely to cut wall-clock latency; results are
    collected by key so callers stay order-independent.

Key Classes:
    - UploadQueue: Thread pool-based upload fan-out

Dependencies:
    - concurrent.futures: Thread pool execution
    - services.base.ObjectStorage: Upload target

Used By:
    - ingestion.extraction: Preview image uploads
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, Hashable, List, Optional, Tuple

from qbank_toolkit.services.base import ObjectStorage

logger = logging.getLogger(__name__)


class UploadQueue:
    """
    Thread pool-based upload queue.

    Usage:
        with UploadQueue(storage, max_workers=4) as queue:
            for page_index, (data, name) in pending.items():
                queue.queue_upload(page_index, data, name)
            urls = queue.wait_all()

    Failed uploads are logged and reported in ``failures``; they never
    raise out of ``wait_all``.
    """

    def __init__(self, storage: ObjectStorage, max_workers: int = 4):
        """
        Args:
            storage: Upload target.
            max_workers: Maximum concurrent uploads.
        """
        self._storage = storage
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="upload")
        self._futures: List[Tuple[Hashable, Future]] = []
        self.failures: Dict[Hashable, str] = {}

    def queue_upload(self, key: Hashable, base64_image: str, filename: str) -> Future:
        """Queue one upload; key identifies the result in wait_all()."""
        future = self._executor.submit(self._storage.upload, base64_image, filename)
        self._futures.append((key, future))
        return future

    def wait_all(self, timeout: Optional[float] = None) -> Dict[Hashable, str]:
        """
        Wait for all queued uploads.

        Returns:
            key -> URL for every successful upload.
        """
        urls: Dict[Hashable, str] = {}
        for key, future in self._futures:
            try:
                urls[key] = future.result(timeout=timeout)
            except Exception as e:
                logger.error(f"Upload failed for {key}: {e}", extra={"upload_key": str(key)})
                self.failures[key] = str(e)
        self._futures.clear()
        return urls

    def shutdown(self) -> None:
        self.wait_all()
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "UploadQueue":
        return self

    def __exit__(self, *args) -> None:
        self.shutdown()
