"""
Tests for the qbank-ingest command line.

Services are replaced with the in-memory fakes; logging setup is
stubbed so pytest's capture handlers stay in place.
"""
import json
from types import SimpleNamespace

import pytest

from ingest_fakes import FakeExtractionService, FakeStorage, InMemoryQuestionStore, draw_page, png_bytes, question
from qbank_toolkit import cli
from qbank_toolkit.core.models import QuestionCandidate
from qbank_toolkit.core.utils.serialization import build_checkpoint, save_checkpoint


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda level, log_file=None: None)


@pytest.fixture
def fake_services(monkeypatch):
    services = SimpleNamespace(
        extraction=FakeExtractionService(lambda request, index: [question(1), question(2)]),
        storage=FakeStorage(),
        store=InMemoryQuestionStore(),
    )
    monkeypatch.setattr(cli, "build_services", lambda settings: services)
    return services


class TestRanges:
    def test_ranges_when_known_certification_then_json_list(self, capsys):
        code = cli.main(["ranges", "전기기사"])

        data = json.loads(capsys.readouterr().out)
        assert code == 0
        assert [r["name"] for r in data][:2] == ["전기자기학", "전력공학"]
        assert data[1]["questionStart"] == 21

    def test_ranges_when_unknown_certification_then_exit_2(self, capsys):
        assert cli.main(["ranges", "없는자격증"]) == 2
        assert "없는자격증" in capsys.readouterr().err


class TestLoad:
    def test_load_when_checkpoint_then_summary(self, tmp_path, capsys):
        checkpoint = build_checkpoint("전력공학", [QuestionCandidate("21. 가", options=("a", "b"))])
        path = save_checkpoint(tmp_path, checkpoint)

        code = cli.main(["load", str(path)])

        assert code == 0
        assert "전력공학: 1문항" in capsys.readouterr().out

    def test_load_when_missing_then_exit_1(self, tmp_path):
        assert cli.main(["load", str(tmp_path / "missing.json")]) == 1


class TestRun:
    def test_run_when_pinned_subject_then_saved_and_exit_0(self, tmp_path, capsys, fake_services):
        """Year comes from the file name; both questions are saved."""
        # Arrange
        image = tmp_path / "전기기사_2023_1회.png"
        image.write_bytes(png_bytes(draw_page()))

        # Act
        code = cli.main([
            "run", str(image),
            "--certification", "전기기사",
            "--session", "1",
            "--subject", "전력공학",
            "--checkpoint-dir", str(tmp_path / "checkpoints"),
            "--no-enrichment",
        ])

        # Assert
        out = capsys.readouterr().out
        assert code == 0
        assert "전력공학: 2문항 (저장)" in out
        assert [row["year"] for row in fake_services.store.rows.values()] == [2023, 2023]
        assert len(list((tmp_path / "checkpoints").glob("*.json"))) == 1

    def test_run_when_unsupported_file_then_exit_2(self, tmp_path, capsys, fake_services):
        notes = tmp_path / "notes.docx"
        notes.write_bytes(b"PK")

        code = cli.main(["run", str(notes), "--certification", "전기기사", "--session", "1", "--subject", "전력공학"])

        assert code == 2
        assert "notes.docx" in capsys.readouterr().err

    def test_run_when_manual_diagram_without_dismiss_then_cancelled(self, tmp_path, capsys, fake_services):
        """Non-interactive runs refuse to save questions that still need a diagram."""
        fake_services.extraction.handler = lambda request, index: [question(1, "회로의 합성 저항을 구하는 방법은?")]
        image = tmp_path / "p1.png"
        image.write_bytes(png_bytes(draw_page()))

        code = cli.main([
            "run", str(image), "--certification", "전기기사", "--year", "2023",
            "--session", "1", "--subject", "전력공학", "--no-enrichment",
        ])

        assert code == 1
        assert fake_services.store.rows == {}
        assert "--dismiss-manual" in capsys.readouterr().err

    def test_run_when_dismiss_manual_then_saved(self, tmp_path, fake_services):
        fake_services.extraction.handler = lambda request, index: [question(1, "회로의 합성 저항을 구하는 방법은?")]
        image = tmp_path / "p1.png"
        image.write_bytes(png_bytes(draw_page()))

        code = cli.main([
            "run", str(image), "--certification", "전기기사", "--year", "2023",
            "--session", "1", "--subject", "전력공학", "--no-enrichment", "--dismiss-manual",
        ])

        assert code == 0
        [row] = fake_services.store.rows.values()
        assert row["diagram_url"] is None
