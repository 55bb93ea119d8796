"""Object key layout for stored uploads.

Resumes live under ``resumes/<user_id>/<resume_id>/<filename>`` so one
user's files can be listed or purged by prefix.
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath

RESUME_KEY_PREFIX = "resumes"
FALLBACK_FILENAME = "resume"
MAX_FILENAME_LENGTH = 200
FILENAME_SANITIZE_RE = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(raw_filename: str | None) -> str:
    candidate = (raw_filename or FALLBACK_FILENAME).strip()
    # Browsers on Windows may send the full client path.
    candidate = PurePosixPath(candidate.replace("\\", "/")).name
    candidate = FILENAME_SANITIZE_RE.sub("_", candidate)
    candidate = candidate.strip("._") or FALLBACK_FILENAME
    if len(candidate) > MAX_FILENAME_LENGTH:
        path = PurePosixPath(candidate)
        stem = path.stem[:160] or FALLBACK_FILENAME
        candidate = f"{stem}{path.suffix[:20]}"
    return candidate


def resume_key(user_id: int | str, resume_id: str, filename: str | None) -> str:
    return f"{RESUME_KEY_PREFIX}/{user_id}/{resume_id}/{safe_filename(filename)}"
