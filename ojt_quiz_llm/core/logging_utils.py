from __future__ import annotations

import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _rotation_settings() -> tuple[int, int, int]:
    max_bytes = _env_int("OJT_QUIZ_LOG_MAX_BYTES", 5 * 1024 * 1024)
    max_age_hours = _env_int("OJT_QUIZ_LOG_MAX_AGE_HOURS", 24)
    max_files = _env_int("OJT_QUIZ_LOG_MAX_FILES", 5)
    return max_bytes, max_age_hours, max_files


def rotate_log_if_needed(path: Path) -> Optional[Path]:
    """Move an oversized or stale log aside; returns the rotated path if any."""
    max_bytes, max_age_hours, max_files = _rotation_settings()
    if max_bytes <= 0 and max_age_hours <= 0:
        return None
    if not path.is_file():
        return None

    now = datetime.now(timezone.utc)
    try:
        stat = path.stat()
    except FileNotFoundError:
        return None

    size_exceeded = max_bytes > 0 and stat.st_size >= max_bytes
    if max_age_hours > 0:
        mtime = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        age_exceeded = (now - mtime).total_seconds() >= max_age_hours * 3600
    else:
        age_exceeded = False

    if not size_exceeded and not age_exceeded:
        return None

    timestamp = now.strftime("%Y%m%d-%H%M%S")
    rotated_path = path.with_name(f"{path.stem}.{timestamp}{path.suffix}")
    shutil.move(str(path), str(rotated_path))

    if max_files > 0:
        rotated_files = sorted(
            path.parent.glob(f"{path.stem}.*{path.suffix}"),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        for old in rotated_files[max_files:]:
            try:
                old.unlink()
            except FileNotFoundError:
                continue
    return rotated_path


def configure_logging(level: Optional[str] = None, log_file: Optional[Path] = None) -> None:
    """Set up the package logger: stderr always, plus a rotated file when configured."""
    level = (level or os.environ.get("OJT_QUIZ_LOG_LEVEL", "INFO")).upper()
    if log_file is None:
        env_file = os.environ.get("OJT_QUIZ_LOG_FILE", "").strip()
        log_file = Path(env_file) if env_file else None

    root = logging.getLogger("ojt_quiz_llm")
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    root.addHandler(stream)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        rotate_log_if_needed(log_file)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
