"""Top-level package for the exam question bank toolkit.

Provides subpackages:
- qbank_toolkit.ingestion – corpus building, extraction runs and the session state machine
- qbank_toolkit.review – diagram bounds editing, cropping and reconciliation
- qbank_toolkit.enrichment – background topic/difficulty/explanation enrichment
- qbank_toolkit.services – extraction, object storage and question store adapters
"""

def _get_version() -> str:
    """Get version from pyproject.toml (dev) or importlib.metadata (installed)."""
    from pathlib import Path

    pyproject = Path(__file__).resolve().parent.parent.parent / "pyproject.toml"
    if pyproject.exists():
        try:
            for line in pyproject.read_text(encoding="utf-8").splitlines():
                if line.strip().startswith("version"):
                    # Parse: version = "0.3.0"
                    return line.split("=")[1].strip().strip('"').strip("'")
        except OSError:
            pass

    try:
        from importlib.metadata import version as pkg_version
        return pkg_version("qbank-toolkit")
    except Exception:
        return "0.0.0"

__version__ = _get_version()
__all__: list[str] = ["__version__"]
