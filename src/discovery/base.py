"""Base interface for discovery modules.

Discovery modules are read-only: they inspect the host and return the
scopes the engine has to act on. They never mutate system state.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.core.models import Scope


class BaseDiscoveryModule(ABC):
    """Abstract base class for all discovery modules.

    Subclasses must implement:
        - scan(): Perform the discovery scan
        - get_module_name(): Return the module identifier

    Example:
        class ProfileEnumerator(BaseDiscoveryModule):
            def get_module_name(self) -> str:
                return "profiles"

            def scan(self) -> list[Scope]:
                return self.enumerate_profiles()
    """

    @abstractmethod
    def scan(self) -> list["Scope"]:
        """Scan and return discovered scopes.

        Returns:
            List of Scope objects discovered by this module.
        """
        pass

    @abstractmethod
    def get_module_name(self) -> str:
        """Return the module identifier."""
        pass

    def get_description(self) -> str:
        """Return a human-readable description of what this module scans."""
        return f"Scans for {self.get_module_name()} on the system"

    def is_available(self) -> bool:
        """Check if this discovery module can run on the current system.

        Default implementation always returns True.
        """
        return True
