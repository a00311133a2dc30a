"""Package metadata for tailfile.

Expose a single source of truth for the version. Prefer reading from
importlib.metadata so that an editable install or wheel always reports
the version declared in pyproject.toml. Fallback to a hardcoded string
to avoid import errors when metadata is unavailable (e.g. direct source
usage without installation).
"""

from __future__ import annotations

from importlib import metadata as _metadata

from .config import TailOptions
from .errors import (
	TailFileError,
	TailPollError,
	TailReadError,
	TailStateError,
	TailTypeError,
	TailValueError,
)
from .tail import TailFile

__all__ = [
	"__version__",
	"TailFile",
	"TailOptions",
	"TailFileError",
	"TailPollError",
	"TailReadError",
	"TailStateError",
	"TailTypeError",
	"TailValueError",
]

_FALLBACK_VERSION = "1.0.0"  # MUST match pyproject.toml [project].version

try:  # pragma: no cover - success path covered indirectly via CLI test
	__version__ = _metadata.version("tailfile")  # type: ignore[assignment]
except Exception:  # pragma: no cover - fallback exercised if metadata missing
	__version__ = _FALLBACK_VERSION
