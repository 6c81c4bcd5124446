"""Discovery modules for enumerating provisioning scopes."""

from .base import BaseDiscoveryModule
from .profiles import ProfileEntry, ProfileEnumerator, create_profile_enumerator

__all__ = [
    "BaseDiscoveryModule",
    # Profiles
    "ProfileEnumerator",
    "ProfileEntry",
    "create_profile_enumerator",
]
