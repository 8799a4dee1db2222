"""
Module: enrichment.queue

Purpose:
    Metadata Enrichment Queue. A FIFO of (record id, candidate) jobs
    drained by at most one background worker in fixed-size batches:
    classify topic/keywords/difficulty, generate explanation text, then
    write the fields back to the stored row. A fixed delay follows every
    batch. Failures are logged per item and never reach the caller.

    The worker shares nothing with the ingestion session except the
    question store, and every write is keyed by a unique record id.

Key Classes:
    - EnrichmentJob: One record to enrich
    - EnrichmentStats: Counters for observers and tests
    - EnrichmentQueue: FIFO + single worker thread

Dependencies:
    - threading (std)
    - services.base: MetadataService, QuestionStore

Used By:
    - ingestion.pipeline: Enqueues each saved subject batch
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Set

from qbank_toolkit.core.models import QuestionCandidate
from qbank_toolkit.ingestion.config import EnrichmentConfig
from qbank_toolkit.services.base import MetadataService, QuestionStore, TopicClassification

from .normalization import normalize_difficulty, normalize_topic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnrichmentJob:
    record_id: int
    candidate: QuestionCandidate


@dataclass
class EnrichmentStats:
    enqueued: int = 0
    skipped_duplicates: int = 0
    processed: int = 0
    failed: int = 0
    batches: int = 0
    completed_ids: List[int] = field(default_factory=list)


class EnrichmentQueue:
    """
    FIFO of enrichment jobs with at most one active worker.

    Usage:
        queue = EnrichmentQueue(metadata_service, store)
        queue.enqueue(jobs)        # starts the worker if idle
        queue.wait_idle(timeout=30)

    Args:
        service: Topic classification and explanation generation.
        store: Question store the results are written to.
        config: Batch size, inter-batch delay and worker idle timeout.
        sleep: Delay function (replaced in tests).
    """

    def __init__(
        self,
        service: MetadataService,
        store: QuestionStore,
        config: Optional[EnrichmentConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.service = service
        self.store = store
        self.config = config or EnrichmentConfig()
        self._sleep = sleep
        self._cond = threading.Condition()
        self._jobs: Deque[EnrichmentJob] = deque()
        self._known_ids: Set[int] = set()
        self._worker: Optional[threading.Thread] = None
        self._busy = False
        self.stats = EnrichmentStats()

    # ─────────────────────────────────────────────────────────────────────────
    # Producer side
    # ─────────────────────────────────────────────────────────────────────────

    def enqueue(self, jobs: Iterable[EnrichmentJob]) -> int:
        """
        Append jobs and make sure a worker is running.

        A record id that is pending, in flight or already done is skipped.
        Records whose write failed are forgotten and may be queued again.

        Returns:
            Number of jobs actually added.
        """
        added = 0
        with self._cond:
            for job in jobs:
                if job.record_id in self._known_ids:
                    self.stats.skipped_duplicates += 1
                    continue
                self._known_ids.add(job.record_id)
                self._jobs.append(job)
                added += 1
            self.stats.enqueued += added
            self._cond.notify_all()
        if added:
            logger.info(f"Queued {added} record(s) for enrichment", extra={"queued": added})
            self.start()
        return added

    def start(self) -> None:
        """Start the worker unless one is already active; safe to call repeatedly."""
        with self._cond:
            if self._worker is not None and self._worker.is_alive():
                return
            if not self._jobs:
                return
            self._worker = threading.Thread(target=self._run, name="enrichment-worker", daemon=True)
            self._worker.start()

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._jobs)

    @property
    def is_active(self) -> bool:
        """True while a worker thread exists."""
        with self._cond:
            return self._worker is not None

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the queue is empty and no batch is in flight."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._jobs or self._busy:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(timeout=remaining if remaining is not None else 0.1)
            return True

    # ─────────────────────────────────────────────────────────────────────────
    # Worker
    # ─────────────────────────────────────────────────────────────────────────

    def _take_batch(self) -> List[EnrichmentJob]:
        with self._cond:
            if not self._jobs:
                self._cond.wait(timeout=self.config.idle_timeout_seconds)
            batch = []
            while self._jobs and len(batch) < self.config.batch_size:
                batch.append(self._jobs.popleft())
            if batch:
                self._busy = True
            else:
                self._worker = None
                self._cond.notify_all()
            return batch

    def _run(self) -> None:
        logger.debug("Enrichment worker started")
        while True:
            batch = self._take_batch()
            if not batch:
                break
            try:
                self.process_batch(batch)
                self._sleep(self.config.batch_delay_seconds)
            finally:
                with self._cond:
                    self._busy = False
                    self._cond.notify_all()
        logger.debug("Enrichment worker idle, exiting")

    def process_batch(self, batch: List[EnrichmentJob]) -> None:
        """Classify the batch, then generate details and write each record."""
        classifications: Dict[int, Optional[TopicClassification]] = {}
        for job in batch:
            try:
                classifications[job.record_id] = self.service.classify_topic(job.candidate)
            except Exception as e:
                logger.warning(
                    f"Topic classification failed for record {job.record_id}: {e}",
                    extra={"record_id": job.record_id},
                )
                classifications[job.record_id] = None

        for job in batch:
            try:
                fields = self._build_fields(job, classifications.get(job.record_id))
                self.store.update_question(job.record_id, fields)
            except Exception as e:
                logger.error(f"Enrichment failed for record {job.record_id}: {e}", extra={"record_id": job.record_id})
                with self._cond:
                    self.stats.failed += 1
                    self._known_ids.discard(job.record_id)
                continue
            with self._cond:
                self.stats.processed += 1
                self.stats.completed_ids.append(job.record_id)

        with self._cond:
            self.stats.batches += 1
        logger.info(f"Enriched batch of {len(batch)} record(s)", extra={"batch_size": len(batch)})

    def _build_fields(self, job: EnrichmentJob, classification: Optional[TopicClassification]) -> Dict[str, Any]:
        candidate = job.candidate
        category, keywords = normalize_topic(
            classification.topic_category if classification else None,
            classification.topic_keywords if classification else (),
            prior_category=candidate.topic_category,
            prior_keywords=candidate.topic_keywords,
        )
        difficulty = normalize_difficulty(
            (classification.difficulty_level if classification else None) or candidate.difficulty_level
        )

        explanation, hint, rationale = candidate.ai_explanation, candidate.hint, candidate.rationale
        try:
            details = self.service.generate_details(candidate)
            explanation = details.ai_explanation or explanation
            hint = details.hint or hint
            rationale = details.rationale or rationale
        except Exception as e:
            logger.warning(
                f"Explanation generation failed for record {job.record_id}: {e}",
                extra={"record_id": job.record_id},
            )

        return {
            "topic_category": category,
            "topic_keywords": list(keywords),
            "difficulty_level": difficulty,
            "ai_explanation": explanation or "",
            "hint": hint or "",
            "rationale": rationale or "",
        }
