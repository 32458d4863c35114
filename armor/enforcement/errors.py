"""
Enforcer exceptions.

Every failure the enforcer can report maps to one of these; each carries
the ErrorCategory used when it is handed to handle_error().
"""

from armor.utils.error_handling import ErrorCategory


class EnforcerError(Exception):
    """Base class for AppArmor enforcer failures"""
    category = ErrorCategory.UNKNOWN


class OwnershipConflictError(EnforcerError):
    """Profile exists on disk but was not created by this daemon"""
    category = ErrorCategory.OWNERSHIP

    def __init__(self, profile_name: str):
        self.profile_name = profile_name
        super().__init__(f"{profile_name} (out-of-control)")


class ProfileCompileError(EnforcerError):
    """A security rule cannot be rendered safely"""
    category = ErrorCategory.COMPILATION


class LoaderError(EnforcerError):
    """apparmor_parser rejected the profile, failed or timed out"""
    category = ErrorCategory.LOADER

    def __init__(self, message: str, output: str = ""):
        self.output = output
        super().__init__(message)


class ProfileIOError(EnforcerError):
    """Reading, writing or removing a profile file failed"""
    category = ErrorCategory.FILESYSTEM


class UnknownProfileError(EnforcerError):
    """Unregistration of a profile the registry does not track"""
    category = ErrorCategory.REGISTRY

    def __init__(self, profile_name: str):
        self.profile_name = profile_name
        super().__init__(f"unknown AppArmor profile ({profile_name})")


class InvalidProfileNameError(EnforcerError):
    """Profile name is not usable as an AppArmor name and file name"""
    category = ErrorCategory.REGISTRY

    def __init__(self, profile_name: str):
        self.profile_name = profile_name
        super().__init__(f"invalid AppArmor profile name ({profile_name!r})")


class EnforcerInitError(EnforcerError):
    """The enforcer cannot be constructed"""
    category = ErrorCategory.CONFIG


__all__ = [
    'EnforcerError',
    'OwnershipConflictError',
    'ProfileCompileError',
    'LoaderError',
    'ProfileIOError',
    'UnknownProfileError',
    'InvalidProfileNameError',
    'EnforcerInitError',
]
