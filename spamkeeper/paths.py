"""Path helpers: home expansion and a check that the data directory is mounted."""

from __future__ import annotations

import logging
import os
import subprocess

log = logging.getLogger(__name__)


def expand_path(path: str) -> str:
    """Expand a leading ~ to the home directory and make the path absolute.

    An empty path stays empty. If the home directory is unknown, an empty
    string is returned for a path starting with ~.
    """
    if not path:
        return ""
    if path.startswith("~"):
        home = os.path.expanduser("~")
        if home == "~" or not home:
            return ""
        rest = path[1:].lstrip("/\\")
        return os.path.normpath(os.path.join(home, rest))
    try:
        return os.path.abspath(path)
    except OSError:
        return path


def check_volume_mount(dynamic_data_path: str) -> bool:
    """Warn if the dynamic data directory is not mounted when running in docker.

    Returns True when not running in docker or when the directory looks mounted.
    """
    if os.environ.get("TGSPAM_IN_DOCKER") != "1":
        return True
    log.debug("running in docker")
    warn_msg = (
        f"dynamic files dir {dynamic_data_path!r} is not mounted, "
        "changes will be lost on container restart"
    )

    if not os.path.exists(dynamic_data_path):
        log.warning("%s", warn_msg)
        return False

    if not os.path.exists(os.path.join(dynamic_data_path, ".not_mounted")):
        return True

    # the marker file may still be present with docker named volumes
    try:
        result = subprocess.run(["mount"], capture_output=True, text=True, check=True)
    except (OSError, subprocess.SubprocessError) as exc:
        log.warning("%s, can't check mount: %s", warn_msg, exc)
        return True

    if any(dynamic_data_path in line for line in result.stdout.splitlines()):
        return True

    log.warning("%s", warn_msg)
    return False