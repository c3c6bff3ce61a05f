"""
Auxiliary side effects: git status, default viewer, desktop notifications.

Every command runs with a timeout. Failures (missing binary, timeout,
non-zero exit) are logged at debug level and reported as a return value;
nothing here raises.
"""

import logging
import platform
import shutil
import subprocess
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


def run_command(args: List[str], timeout: float = DEFAULT_TIMEOUT,
                cwd: Optional[str] = None) -> Optional[subprocess.CompletedProcess]:
    """
    Run a command, returning None if it could not run to completion.

    Args:
        args: Command and arguments (never passed through a shell)
        timeout: Seconds before the command is killed
        cwd: Working directory
    """
    try:
        return subprocess.run(
            args,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        logger.debug("Command timed out after %ss: %s", timeout, args[0])
    except OSError as e:
        logger.debug("Command failed to start: %s (%s)", args[0], e)
    return None


class SystemEffects:
    """Host integrations used by the transition engine and completion checker."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, notifications: bool = True,
                 title: str = "Workflow"):
        self.timeout = timeout
        self.notifications = notifications
        self.title = title

    def git_is_clean(self, cwd: Optional[str] = None) -> bool:
        """
        Whether the working tree has nothing to commit.

        Missing git, a directory that is not a repository or a timeout all
        count as clean.
        """
        result = run_command(["git", "status", "--porcelain"], self.timeout, cwd=cwd)
        if result is None or result.returncode != 0:
            return True
        return result.stdout.strip() == ""

    def open_path(self, path: str) -> bool:
        """Open a file with the platform's default viewer."""
        opener = "open" if platform.system() == "Darwin" else "xdg-open"
        if shutil.which(opener) is None:
            logger.debug("No default viewer command available (%s)", opener)
            return False
        result = run_command([opener, path], self.timeout)
        return result is not None and result.returncode == 0

    def notify(self, message: str) -> bool:
        """Show a desktop notification; a no-op where none is available."""
        if not self.notifications:
            return False

        if shutil.which("osascript"):
            script = f'display notification "{_escape(message)}" with title "{_escape(self.title)}"'
            args = ["osascript", "-e", script]
        elif shutil.which("notify-send"):
            args = ["notify-send", self.title, message]
        else:
            logger.debug("No desktop notifier available")
            return False

        result = run_command(args, self.timeout)
        return result is not None and result.returncode == 0


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')
