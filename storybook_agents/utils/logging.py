from __future__ import annotations

from pathlib import Path
import sys

from loguru import logger


_DEFAULT_CONTEXT = {
    "run_id": "-",
    "phase": "-",
    "batch_id": "-",
    "page": "-",
    "attempt": "-",
}

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> "
    "| <level>{level:<8}</level> "
    "| run={extra[run_id]} phase={extra[phase]} batch={extra[batch_id]} page={extra[page]} "
    "attempt={extra[attempt]} "
    "| {message}"
)


def _inject_default_context(record: dict) -> None:
    extra = record["extra"]
    for key, value in _DEFAULT_CONTEXT.items():
        extra.setdefault(key, value)


def setup_logging(level: str, *, log_dir: Path | None = None) -> None:
    """Configure loguru for CLI runs.

    With ``log_dir`` every record is also written as one JSON object per line to
    ``log_dir/storybook.log`` (rotated at 10 MB), so a batch can be traced by
    ``run_id``/``batch_id`` after the console is gone.
    """
    logger.remove()
    logger.configure(patcher=_inject_default_context)
    logger.add(sys.stderr, level=level, backtrace=True, diagnose=False, format=_CONSOLE_FORMAT)
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "storybook.log",
            level="DEBUG",
            serialize=True,
            rotation="10 MB",
            retention=5,
            enqueue=True,
            diagnose=False,
        )
