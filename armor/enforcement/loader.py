"""
Profile loader interface.

The enforcer never talks to the kernel directly: loading (reload + validate)
and unloading go through a ProfileLoader so the lifecycle logic can run
against a fake in tests.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Tuple, Union

from armor.constants import Commands, Timeouts
from armor.logging_config import get_logger
from armor.utils.commands import get_command_output

logger = get_logger(__name__)


class ProfileLoader(ABC):
    """Loads and unloads profile files into the kernel policy set."""

    @abstractmethod
    def load(self, path: Union[str, Path]) -> Tuple[bool, str]:
        """Reload + validate the profile at path. Returns (ok, output)."""

    @abstractmethod
    def unload(self, path: Union[str, Path]) -> Tuple[bool, str]:
        """Detach the profile at path from the kernel. Returns (ok, output)."""

    @property
    def name(self) -> str:
        return type(self).__name__


class AppArmorParserLoader(ProfileLoader):
    """ProfileLoader backed by apparmor_parser."""

    def __init__(
        self,
        parser: str = Commands.APPARMOR_PARSER,
        timeout: float = Timeouts.LOADER_DEFAULT,
    ):
        self.parser = parser
        self.timeout = timeout

    def _run(self, args) -> Tuple[bool, str]:
        output, error = get_command_output(self.parser, args, self.timeout)
        if error:
            detail = output.strip()
            message = f"{error}: {detail}" if detail else error
            logger.debug(f"{self.parser} {' '.join(args)} failed ({message})")
            return False, message
        if output.strip():
            logger.verbose(f"{self.parser} {' '.join(args)}: {output.strip()}")
        return True, output

    def load(self, path: Union[str, Path]) -> Tuple[bool, str]:
        return self._run([Commands.PARSER_RELOAD, Commands.PARSER_WRITE_CACHE, str(path)])

    def unload(self, path: Union[str, Path]) -> Tuple[bool, str]:
        return self._run([Commands.PARSER_REMOVE, str(path)])

    @property
    def name(self) -> str:
        return self.parser


__all__ = ['ProfileLoader', 'AppArmorParserLoader']
