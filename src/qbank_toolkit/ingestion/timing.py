"""
Module: ingestion.timing

Purpose:
    Timing instrumentation for ingestion runs: where the wall-clock goes
    per run phase (corpus build, preview upload) and per subject phase
    (extraction, post-processing, save, reconciliation).

Key Classes:
    - TimingLog: Collects run-level and subject-level durations

Key Functions:
    - timed_phase: Context manager for timing code blocks

Dependencies:
    - time (std)
    - contextlib (std)
    - dataclasses (std)

Used By:
    - ingestion.pipeline: Main ingestion orchestrator
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, List, Optional, Tuple


@dataclass
class TimingLog:
    """
    Timing metrics for an ingestion run.

    Attributes:
        run_timings: phase_name -> duration_seconds
        subject_timings: subject -> {phase_name -> duration_seconds}

    Example:
        >>> log = TimingLog()
        >>> log.log_run("corpus_build", 0.8)
        >>> log.log_subject("전력공학", "extraction", 12.5)
        >>> print(log.summary())
    """
    run_timings: Dict[str, float] = field(default_factory=dict)
    subject_timings: Dict[str, Dict[str, float]] = field(default_factory=dict)

    def log_run(self, phase: str, duration: float) -> None:
        self.run_timings[phase] = self.run_timings.get(phase, 0.0) + duration

    def log_subject(self, subject: str, phase: str, duration: float) -> None:
        phases = self.subject_timings.setdefault(subject, {})
        phases[phase] = phases.get(phase, 0.0) + duration

    def get_subject_total(self, subject: str) -> float:
        return sum(self.subject_timings.get(subject, {}).values())

    def get_slowest_subjects(self, n: int = 3) -> List[Tuple[str, float, str, float]]:
        """The N slowest subjects with their total time and slowest phase."""
        results = []
        for subject, phases in self.subject_timings.items():
            if not phases:
                continue
            slowest = max(phases.items(), key=lambda x: x[1])
            results.append((subject, sum(phases.values()), slowest[0], slowest[1]))
        results.sort(key=lambda x: x[1], reverse=True)
        return results[:n]

    def summary(self) -> str:
        """Generate human-readable timing summary."""
        lines = ["", "=== Ingestion Timing Summary ==="]

        if self.run_timings:
            lines.append("Run-level:")
            for phase, duration in sorted(self.run_timings.items()):
                lines.append(f"  {phase:25s} {duration:.3f}s")

        slowest = self.get_slowest_subjects(len(self.subject_timings))
        if slowest:
            lines.append("")
            lines.append("Subjects:")
            for subject, total, slow_phase, slow_duration in slowest:
                lines.append(f"  {subject}: {total:.3f}s ({slow_phase}: {slow_duration:.3f}s)")

        lines.append("")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_timings": self.run_timings,
            "subject_timings": self.subject_timings,
            "slowest_subjects": [
                {"subject": s, "total": total, "slowest_phase": phase, "phase_duration": dur}
                for s, total, phase, dur in self.get_slowest_subjects(5)
            ],
        }


@contextmanager
def timed_phase(
    log: TimingLog,
    phase: str,
    subject: Optional[str] = None,
) -> Generator[None, None, None]:
    """
    Context manager for timing a code phase.

    Args:
        log: TimingLog instance to record metrics
        phase: Name of the phase being timed
        subject: If provided, records as subject-level metric;
                 otherwise records as run-level metric

    Example:
        >>> with timed_phase(log, "corpus_build"):
        ...     corpus = build_corpus(sources)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        if subject:
            log.log_subject(subject, phase, elapsed)
        else:
            log.log_run(phase, elapsed)
