"""
Declarative container group policies.
"""

from .policy_loader import (
    PolicyFileError,
    container_group_from_dict,
    load_container_group,
)

__all__ = [
    'PolicyFileError',
    'container_group_from_dict',
    'load_container_group',
]
