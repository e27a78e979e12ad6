import os
import sys
from pathlib import Path
from typing import Optional

# argv[0] basenames that belong to a runner rather than the user's script
_RUNNER_MARKERS = ("pytest", "pip", "poetry", "uv")


def get_script_dir() -> Optional[Path]:
    """Directory of the running script, when it looks like the user's project.

    None under a REPL, under a test runner or package manager, or when the
    directory is not writable.
    """
    argv0 = sys.argv[0] if sys.argv else ""
    if not argv0:
        return None
    try:
        script = Path(argv0).resolve()
        if any(marker in script.name.lower() for marker in _RUNNER_MARKERS):
            return None
        if not script.is_file() or not os.access(script.parent, os.W_OK):
            return None
        return script.parent
    except (OSError, ValueError):
        return None


def get_trace_dir(subdir: str = "traces") -> Path:
    """Resolve where JSON-lines trace files are written.

    ``TRACEABLE_TRACE_DIR`` wins. Otherwise ``.traceable/<subdir>`` beside
    the running script, falling back to the home directory.
    """
    override = os.environ.get("TRACEABLE_TRACE_DIR")
    if override:
        return Path(os.path.expanduser(override)).resolve()
    base = get_script_dir() or Path(os.path.expanduser("~"))
    return (base / ".traceable" / subdir).resolve()
