"""Logging set-up shared by every release manager entry point.

Release checks, downloads and launches all report through the root logger
into a single rotating log file.  Users attach that file to bug reports, so
records pass through a scrubber first: API credentials, the home directory
and the account name never reach the disk.

``RECOMP_LOG_FILE`` names the log file directly.  Otherwise
``RECOMP_LOG_DIR`` chooses the folder that receives ``release-manager.log``,
and without either the file lives in ``~/.recomp-release-manager/logs``.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable

_LOG_FILE_ENV = "RECOMP_LOG_FILE"
_LOG_DIR_ENV = "RECOMP_LOG_DIR"
_LOG_NAME = "release-manager.log"
_FALLBACK_DIR = Path(".recomp-release-manager") / "logs"
_ROTATE_BYTES = 2 * 1024 * 1024
_ROTATE_KEEP = 3
_RECORD_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] [%(name)s] %(message)s"
_HANDLER_TAG = "_recomp_logging_handler"

USER_PLACEHOLDER = "<user>"
USER_HOME_PLACEHOLDER = "<user_home>"
TOKEN_PLACEHOLDER = "<token>"


class LogVerbosity(str, Enum):
    """How much of the release manager's chatter lands in the log file."""

    DISABLED = "disabled"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    VERBOSE = "verbose"

    @property
    def level(self) -> int:
        return {
            "disabled": logging.CRITICAL + 1,
            "error": logging.ERROR,
            "warning": logging.WARNING,
            "info": logging.INFO,
            "verbose": logging.DEBUG,
        }[self.value]


@dataclass
class _LoggingState:
    log_path: Path | None = None
    file_handler: logging.Handler | None = None
    verbosity: LogVerbosity = LogVerbosity.INFO


_STATE = _LoggingState()

_CREDENTIAL_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)(bearer\s+)[A-Za-z0-9_\-.=]+"), r"\g<1>" + TOKEN_PLACEHOLDER),
    (
        re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9]{20,}|github_pat_[A-Za-z0-9_]{20,})\b"),
        TOKEN_PLACEHOLDER,
    ),
)


def _home_directories() -> list[str]:
    found = {str(Path.home())}
    found.update(
        os.path.expanduser(os.environ[name]) for name in ("HOME", "USERPROFILE") if os.environ.get(name)
    )
    cleaned = {os.path.normpath(entry) for entry in found if entry}
    cleaned.discard(os.sep)
    cleaned.discard(".")
    variants = cleaned | {entry.replace("\\", "/") for entry in cleaned}
    return sorted(variants, key=len, reverse=True)


def _account_names() -> list[str]:
    found = {Path.home().name}
    found.update(os.environ.get(name, "") for name in ("USERNAME", "USER", "LOGNAME"))
    return sorted({name.strip() for name in found if name and name.strip()}, key=len, reverse=True)


def _privacy_rules() -> tuple[tuple[re.Pattern[str], str], ...]:
    rules: list[tuple[re.Pattern[str], str]] = []
    home_flags = re.IGNORECASE if os.name == "nt" else 0
    for home in _home_directories():
        rules.append((re.compile(re.escape(home), home_flags), USER_HOME_PLACEHOLDER))
    for name in _account_names():
        escaped = re.escape(name)
        # Word boundaries only make sense for names containing word characters.
        pattern = rf"(?<!\w){escaped}(?!\w)" if re.search(r"\w", name) else escaped
        rules.append((re.compile(pattern, re.IGNORECASE), USER_PLACEHOLDER))
    return tuple(rules)


_PRIVACY_RULES = _privacy_rules()


def scrub(text: str) -> str:
    """Return ``text`` with credentials and personal paths replaced."""

    for pattern, replacement in _CREDENTIAL_RULES + _PRIVACY_RULES:
        text = pattern.sub(replacement, text)
    return text


class _ScrubbingFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return scrub(super().format(record))


def _log_destination() -> Path:
    explicit = os.environ.get(_LOG_FILE_ENV)
    if explicit:
        return Path(explicit).expanduser()
    folder = os.environ.get(_LOG_DIR_ENV)
    if folder:
        return Path(folder).expanduser() / _LOG_NAME
    return Path.home() / _FALLBACK_DIR / _LOG_NAME


def _stderr_is_interactive(existing: Iterable[logging.Handler]) -> bool:
    stream = getattr(sys, "stderr", None)
    try:
        interactive = bool(stream is not None and stream.isatty())
    except (AttributeError, OSError, ValueError):
        return False
    if not interactive:
        return False
    return not any(
        isinstance(handler, logging.StreamHandler) and handler.stream is stream for handler in existing
    )


def _tagged(handler: logging.Handler, formatter: logging.Formatter, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    setattr(handler, _HANDLER_TAG, True)
    return handler


def ensure_app_logging() -> Path:
    """Attach the release manager's handlers to the root logger once.

    The log file always receives records; a console handler at INFO is added
    only when stderr is a terminal.  Returns the log file path.
    """

    if _STATE.log_path is not None:
        return _STATE.log_path

    destination = _log_destination()
    destination.parent.mkdir(parents=True, exist_ok=True)
    formatter = _ScrubbingFormatter(_RECORD_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    file_handler = _tagged(
        logging.handlers.RotatingFileHandler(
            destination, maxBytes=_ROTATE_BYTES, backupCount=_ROTATE_KEEP, encoding="utf-8"
        ),
        formatter,
        _STATE.verbosity.level,
    )
    console = _stderr_is_interactive(root.handlers)
    root.addHandler(file_handler)
    if console:
        root.addHandler(_tagged(logging.StreamHandler(), formatter, logging.INFO))

    _STATE.log_path = destination
    _STATE.file_handler = file_handler
    logging.getLogger(__name__).info(
        "Release manager log file: %s (verbosity=%s)", destination, _STATE.verbosity.value
    )
    return destination


def set_file_log_verbosity(verbosity: LogVerbosity | str) -> None:
    """Change the minimum severity written to the log file.

    Strings are matched case-insensitively against :class:`LogVerbosity`
    values; unknown names raise :class:`ValueError`.
    """

    if not isinstance(verbosity, LogVerbosity):
        try:
            verbosity = LogVerbosity(str(verbosity).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown log verbosity {verbosity!r}") from exc

    ensure_app_logging()
    _STATE.verbosity = verbosity
    if _STATE.file_handler is not None:
        _STATE.file_handler.setLevel(verbosity.level)
    logging.getLogger(__name__).info("Log file verbosity is now %s", verbosity.value)


def get_file_log_verbosity() -> LogVerbosity:
    return _STATE.verbosity


def _reset_for_tests() -> None:
    root = logging.getLogger()
    for handler in [handler for handler in root.handlers if getattr(handler, _HANDLER_TAG, False)]:
        root.removeHandler(handler)
        handler.close()
    _STATE.log_path = None
    _STATE.file_handler = None
    _STATE.verbosity = LogVerbosity.INFO


__all__ = [
    "LogVerbosity",
    "TOKEN_PLACEHOLDER",
    "USER_HOME_PLACEHOLDER",
    "USER_PLACEHOLDER",
    "ensure_app_logging",
    "get_file_log_verbosity",
    "scrub",
    "set_file_log_verbosity",
]
