"""
Command-line entry point.

    qbank-ingest run 전기기사_2023_1회.pdf --certification 전기기사 --session 1
    qbank-ingest run p1.jpg p2.jpg --certification 전기기사 --year 2023 --session 2 --subject 전력공학
    qbank-ingest ranges 전기기사
    qbank-ingest load checkpoints/전력공학_20240101T120000.json

Services are configured from QBANK_* environment variables (see
ServiceSettings.from_env).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from qbank_toolkit import __version__
from qbank_toolkit.common.certifications import (
    UnknownCertificationError,
    certification_subjects,
    default_subject_ranges,
    supported_certifications,
)
from qbank_toolkit.common.logging_utils import configure_logging
from qbank_toolkit.core.models import ExamIdentity
from qbank_toolkit.core.schemas.validator import ValidationError
from qbank_toolkit.core.utils.serialization import load_checkpoint
from qbank_toolkit.enrichment.queue import EnrichmentQueue
from qbank_toolkit.ingestion.config import EnrichmentConfig, IngestionConfig, ServiceSettings
from qbank_toolkit.ingestion.errors import IngestionError, InputValidationError
from qbank_toolkit.ingestion.pipeline import IngestionPipeline, IngestionRequest, IngestionResult
from qbank_toolkit.ingestion.session import ProcessingSession, SessionSnapshot, SessionState
from qbank_toolkit.ingestion.validation import parse_subject_ranges, read_source_files
from qbank_toolkit.services import build_services

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="qbank-ingest", description="Exam question ingestion")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", type=Path, help="Also write logs to this file")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Ingest source files")
    run.add_argument("files", nargs="+", type=Path, help="Page images, text PDFs or .txt files")
    run.add_argument("--certification", required=True, help=f"One of {supported_certifications()}")
    run.add_argument("--year", type=int, help="Exam year (detected from file names if omitted)")
    run.add_argument("--session", type=int, required=True, help="Exam session (회차)")
    group = run.add_mutually_exclusive_group()
    group.add_argument("--subject", help="Pin a single subject; the whole corpus belongs to it")
    group.add_argument("--ranges", type=Path, help="JSON file with subject ranges")
    run.add_argument("--checkpoint-dir", type=Path, help="Write a JSON checkpoint per subject")
    run.add_argument("--diagnostics", type=Path, help="Merge the run's diagnostics report into this file")
    run.add_argument("--quota", type=int, default=40, help="Question cap for a pinned subject")
    run.add_argument("--interactive", action="store_true", help="Ask before saving each subject")
    run.add_argument(
        "--dismiss-manual",
        action="store_true",
        help="Save without diagrams for questions that need a manual one",
    )
    run.add_argument("--no-enrichment", action="store_true", help="Skip background metadata enrichment")

    ranges = sub.add_parser("ranges", help="Print the default subject ranges of a certification")
    ranges.add_argument("certification")

    load = sub.add_parser("load", help="Summarize a subject checkpoint file")
    load.add_argument("path", type=Path)
    return parser


class ConsoleOperator:
    """Answers session gates from the terminal (or automatically)."""

    def __init__(self, interactive: bool, dismiss_manual: bool):
        self.session: Optional[ProcessingSession] = None
        self.interactive = interactive
        self.dismiss_manual = dismiss_manual

    def __call__(self, snapshot: SessionSnapshot) -> None:
        if snapshot.state is SessionState.AWAITING_DIAGRAM_REVIEW:
            # Boxes are accepted as detected
            self.session.apply_diagram_review()
        elif snapshot.state is SessionState.AWAITING_SAVE and not snapshot.cancel_requested:
            self._confirm(snapshot)

    def _confirm(self, snapshot: SessionSnapshot) -> None:
        if snapshot.last_error:
            print(f"저장 실패: {snapshot.last_error}", file=sys.stderr)
            if not self.interactive:
                self.session.cancel()
                return
        if snapshot.outstanding_manual_diagrams:
            if not self.dismiss_manual and not self.interactive:
                print(
                    f"{snapshot.subject}: 도면이 필요한 문항 {len(snapshot.outstanding_manual_diagrams)}개가 있습니다. "
                    "--dismiss-manual 없이 저장하지 않습니다.",
                    file=sys.stderr,
                )
                self.session.cancel()
                return
            # The resulting notification confirms the cleaned batch
            self.session.dismiss_manual_diagrams()
            return
        if self.interactive:
            package = self.session.package
            count = len(package.questions) if package else 0
            answer = input(f"{snapshot.subject}: {count}문항을 저장할까요? [y/N/q] ").strip().lower()
            if answer != "y":
                self.session.cancel()
                return
        try:
            self.session.request_save()
        except InputValidationError as e:
            print(str(e), file=sys.stderr)
            self.session.cancel()


def _load_ranges(args: argparse.Namespace):
    if args.ranges is None:
        return []
    items = json.loads(args.ranges.read_text(encoding="utf-8"))
    return parse_subject_ranges(items)


def _print_result(result: IngestionResult) -> None:
    print(f"상태: {result.state.value}")
    for outcome in result.subjects:
        status = "저장" if outcome.saved else ("건너뜀" if outcome.skipped else "미완료")
        print(f"  {outcome.subject}: {outcome.question_count}문항 ({status})")
        if outcome.match_report and outcome.match_report.has_misses:
            print(f"    {outcome.match_report.summary()}")
    for warning in result.warnings:
        print(f"  경고: {warning}")
    if result.error:
        print(f"오류: {result.error}", file=sys.stderr)


def cmd_run(args: argparse.Namespace) -> int:
    settings = ServiceSettings.from_env()
    services = build_services(settings)
    config = IngestionConfig(subject_quota=args.quota, checkpoint_dir=args.checkpoint_dir)

    operator = ConsoleOperator(args.interactive, args.dismiss_manual)
    session = ProcessingSession(
        poll_interval=config.poll_interval_seconds,
        min_crop_size=config.min_crop_size,
        on_state_change=operator,
    )
    operator.session = session

    enrichment = None
    if not args.no_enrichment:
        enrichment = EnrichmentQueue(services.extraction, services.store, EnrichmentConfig())

    pipeline = IngestionPipeline(
        services.extraction,
        services.storage,
        services.store,
        config=config,
        enrichment=enrichment,
        session=session,
    )
    request = IngestionRequest(
        uploads=read_source_files(args.files),
        identity=ExamIdentity(args.certification, args.year, args.session),
        subject_ranges=_load_ranges(args),
        selected_subject=args.subject,
    )
    result = pipeline.run(request)
    _print_result(result)

    if args.diagnostics and result.diagnostics is not None:
        result.diagnostics.save(args.diagnostics)
    if enrichment is not None and not enrichment.wait_idle(timeout=600):
        logger.warning("Enrichment still running at exit")
    return 0 if result.state is SessionState.COMPLETED else 1


def cmd_ranges(args: argparse.Namespace) -> int:
    certification_subjects(args.certification)
    ranges = default_subject_ranges(args.certification)
    print(json.dumps([r.to_dict() for r in ranges], ensure_ascii=False, indent=2))
    return 0


def cmd_load(args: argparse.Namespace) -> int:
    checkpoint = load_checkpoint(args.path)
    print(f"{checkpoint.subject}: {len(checkpoint.questions)}문항 (saved {checkpoint.saved_at})")
    if checkpoint.question_range:
        print(f"  문항 범위: {checkpoint.question_range['start']}-{checkpoint.question_range['end']}")
    for warning in checkpoint.warnings:
        print(f"  경고: {warning}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)

    commands = {"run": cmd_run, "ranges": cmd_ranges, "load": cmd_load}
    try:
        return commands[args.command](args)
    except InputValidationError as e:
        for error in e.errors:
            print(error, file=sys.stderr)
        return 2
    except UnknownCertificationError as e:
        print(f"지원하지 않는 자격증입니다: {e}", file=sys.stderr)
        return 2
    except ValidationError as e:
        print(f"체크포인트 형식 오류: {e}", file=sys.stderr)
        return 2
    except (IngestionError, FileNotFoundError) as e:
        print(str(e), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
