"""
Process execution helpers.

Thin wrappers around subprocess.run used to invoke apparmor_parser and
mount. Failures are reported as values, never raised.
"""

import logging
import subprocess
from typing import List, Optional, Tuple

from armor.constants import Commands, Paths, Timeouts

logger = logging.getLogger(__name__)


def get_command_output(
    cmd: str,
    args: List[str],
    timeout: float = Timeouts.LOADER_DEFAULT,
) -> Tuple[str, Optional[str]]:
    """
    Run a command and collect its combined output.

    Returns:
        (output, error) where error is None on a zero exit status and a
        human-readable description otherwise.
    """
    try:
        result = subprocess.run(
            [cmd] + list(args),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        return "", f"{cmd} not found"
    except subprocess.TimeoutExpired:
        return "", f"{cmd} timed out after {timeout:.0f}s"
    except OSError as e:
        return "", f"{cmd} could not be executed: {e}"

    output = (result.stdout or "") + (result.stderr or "")
    if result.returncode != 0:
        return output, f"{cmd} exited with status {result.returncode}"
    return output, None


def get_command_output_without_err(
    cmd: str,
    args: List[str],
    timeout: float = Timeouts.LOADER_DEFAULT,
) -> str:
    """Best-effort variant: errors are logged at debug level and dropped."""
    output, error = get_command_output(cmd, args, timeout)
    if error:
        logger.debug(f"{cmd} {' '.join(args)}: {error}")
    return output


def mount_securityfs(
    mount_point: str = Paths.SECURITYFS_MOUNT,
    timeout: float = Timeouts.MOUNT,
) -> None:
    """Mount securityfs so apparmor_parser can reach the kernel interface.

    Already-mounted hosts make mount fail, which is fine.
    """
    get_command_output_without_err(
        Commands.MOUNT,
        ["-t", "securityfs", "securityfs", mount_point],
        timeout,
    )


__all__ = [
    'get_command_output',
    'get_command_output_without_err',
    'mount_securityfs',
]
