"""Runtime settings for the CBT engine, read from ``CBT_*`` environment variables.

A ``.env`` file in the working directory is loaded first, so deployments
can keep their overrides next to the data directory.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv

from cbt_app.constants.exam_constants import DEFAULT_DEADLINE_GRACE_SECONDS
from cbt_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class CbtSettings:
    """
    Engine configuration (immutable).

    Attributes:
        host: Interface the HTTP server binds to.
        port: Port the HTTP server listens on.
        data_dir: Directory for JSON collections; ``None`` keeps everything in memory.
        allow_concurrent_attempts: Let a student hold several active sessions for one exam.
        expose_answer_key: Include ``correctAnswer`` in student question views.
        enforce_deadline: Reject progress and late answers after the time budget.
        deadline_grace_seconds: Slack granted to late auto-submits.
        selection_seed: Seed for random question draws; ``None`` uses system entropy.
        log_level: Root logging level name.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    data_dir: Path | None = None
    allow_concurrent_attempts: bool = True
    expose_answer_key: bool = False
    enforce_deadline: bool = False
    deadline_grace_seconds: int = DEFAULT_DEADLINE_GRACE_SECONDS
    selection_seed: int | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "CbtSettings":
        if environ is None:
            load_dotenv()
            environ = os.environ
        data_dir = environ.get("CBT_DATA_DIR")
        seed = environ.get("CBT_SELECTION_SEED")
        return cls(
            host=environ.get("CBT_HOST", DEFAULT_HOST),
            port=_parse_int(environ, "CBT_PORT", DEFAULT_PORT),
            data_dir=Path(data_dir) if data_dir else None,
            allow_concurrent_attempts=_parse_bool(environ, "CBT_ALLOW_CONCURRENT_ATTEMPTS", True),
            expose_answer_key=_parse_bool(environ, "CBT_EXPOSE_ANSWER_KEY", False),
            enforce_deadline=_parse_bool(environ, "CBT_ENFORCE_DEADLINE", False),
            deadline_grace_seconds=_parse_int(
                environ, "CBT_DEADLINE_GRACE_SECONDS", DEFAULT_DEADLINE_GRACE_SECONDS
            ),
            selection_seed=int(seed) if seed else None,
            log_level=environ.get("CBT_LOG_LEVEL", "INFO").upper(),
        )


def _parse_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _parse_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
