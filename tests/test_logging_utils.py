import logging
from pathlib import Path

from mechvibe.logging_utils import (
    LOG_DIR_ENV,
    configure_logging,
    get_log_dir,
    get_log_path,
    log_exception,
)


def test_log_path_uses_env_override(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv(LOG_DIR_ENV, str(tmp_path))
    assert get_log_dir() == tmp_path
    assert get_log_path() == tmp_path / "mechvibe.log"


def test_log_exception_appends_traceback(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv(LOG_DIR_ENV, str(tmp_path / "logs"))
    try:
        raise ValueError("bad pitch")
    except ValueError as exc:
        path = log_exception("render", exc)
    assert path == tmp_path / "logs" / "mechvibe.log"
    content = path.read_text(encoding="utf-8")
    assert "render failed: ValueError: bad pitch" in content
    assert "Traceback" in content


def test_configure_logging_is_idempotent() -> None:
    logger = configure_logging(logging.INFO)
    configure_logging(logging.DEBUG)
    marked = [handler for handler in logger.handlers if getattr(handler, "_mechvibe", False)]
    assert len(marked) == 1
    assert logger.level == logging.DEBUG
    configure_logging()
