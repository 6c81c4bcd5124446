"""Profile Enumerator - Discovery module for provisioning scopes.

Reads the profile index under
HKLM\\SOFTWARE\\Microsoft\\Windows NT\\CurrentVersion\\ProfileList and
turns each real local user into a Scope. Service and system accounts are
filtered out, as are profiles whose directory is gone. The synthetic
default-profile scope (the template for accounts not yet created) is
always returned as well.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path, PureWindowsPath

from src.core.models import DEFAULT_MOUNT_PREFIX, Scope
from src.discovery.base import BaseDiscoveryModule

logger = logging.getLogger("provisionr.discovery.profiles")

PROFILE_LIST_PATH = r"SOFTWARE\Microsoft\Windows NT\CurrentVersion\ProfileList"
HIVE_FILE_NAME = "NTUSER.DAT"

# Well-known SIDs for LocalSystem, LocalService and NetworkService
SYSTEM_SIDS = {"S-1-5-18", "S-1-5-19", "S-1-5-20"}

# Local, domain (S-1-5-21) and Entra ID (S-1-12-1) user accounts
USER_SID_PATTERN = re.compile(r"^S-1-(5-21|12-1)(-\d+){4}$")

SYSTEM_ACCOUNT_PATTERNS = [
    re.compile(r"^systemprofile$", re.IGNORECASE),
    re.compile(r"^localservice$", re.IGNORECASE),
    re.compile(r"^networkservice$", re.IGNORECASE),
    re.compile(r"^defaultuser\d*$", re.IGNORECASE),
    re.compile(r"^default$", re.IGNORECASE),
    re.compile(r"^public$", re.IGNORECASE),
    re.compile(r"^wdagutilityaccount$", re.IGNORECASE),
    re.compile(r"\$$"),
]


@dataclass
class ProfileEntry:
    """A raw entry from the profile index.

    Attributes:
        security_id: Security identifier of the account
        profile_path: Profile directory (ProfileImagePath, env vars expanded)
    """

    security_id: str
    profile_path: str

    @property
    def username(self) -> str:
        return PureWindowsPath(self.profile_path).name

    @property
    def hive_path(self) -> str:
        return str(PureWindowsPath(self.profile_path) / HIVE_FILE_NAME)


def is_system_account(security_id: str, username: str) -> bool:
    """Check whether a profile belongs to a service or system account."""
    if security_id in SYSTEM_SIDS:
        return True
    if not USER_SID_PATTERN.match(security_id):
        return True
    return any(pattern.search(username) for pattern in SYSTEM_ACCOUNT_PATTERNS)


class ProfileEnumerator(BaseDiscoveryModule):
    """Discovery module for user profile scopes.

    Example:
        enumerator = ProfileEnumerator()
        for scope in enumerator.enumerate_profiles():
            print(scope.key, scope.hive_path)
    """

    def __init__(self, mount_prefix: str = DEFAULT_MOUNT_PREFIX) -> None:
        """Initialize the profile enumerator.

        Args:
            mount_prefix: Prefix for HKU mount names of discovered scopes
        """
        self.mount_prefix = mount_prefix
        self._is_windows = os.name == "nt"

    def get_module_name(self) -> str:
        """Return the module identifier."""
        return "profiles"

    def get_description(self) -> str:
        """Return module description."""
        return "Enumerates local user profiles and the default profile"

    def is_available(self) -> bool:
        """Check if this module can run on the current system."""
        return self._is_windows

    def scan(self) -> list[Scope]:
        """Return every profile scope, default profile included."""
        return self.enumerate_profiles()

    def enumerate_profiles(self) -> list[Scope]:
        """Discover user profile scopes plus the default profile.

        Returns:
            User profile scopes followed by the DefaultProfile scope. An
            empty user list is a valid result.
        """
        entries = self._read_profile_list()
        if not entries:
            entries = self._read_profiles_wmi()

        scopes: list[Scope] = []
        seen: set[str] = set()

        for entry in entries:
            if entry.security_id in seen:
                continue
            seen.add(entry.security_id)

            if is_system_account(entry.security_id, entry.username):
                logger.debug(f"Skipping system profile: {entry.username} ({entry.security_id})")
                continue

            if not self._directory_exists(entry.profile_path):
                logger.debug(f"Skipping profile with missing directory: {entry.profile_path}")
                continue

            scopes.append(
                Scope.user(
                    username=entry.username,
                    security_id=entry.security_id,
                    hive_path=entry.hive_path,
                    mount_prefix=self.mount_prefix,
                )
            )

        if not scopes:
            logger.info("No eligible user profiles found")
        else:
            logger.info(f"Found {len(scopes)} user profile(s)")

        scopes.append(
            Scope.default_profile(
                hive_path=str(PureWindowsPath(self._default_profile_dir()) / HIVE_FILE_NAME),
                mount_prefix=self.mount_prefix,
            )
        )
        return scopes

    def enumerate_scopes(self, include_machine: bool = True) -> list[Scope]:
        """Discover every scope the engine can act on.

        Args:
            include_machine: Whether to prepend the machine scope

        Returns:
            Machine scope (optional), user profiles, default profile
        """
        scopes = self.enumerate_profiles()
        if include_machine:
            scopes.insert(0, Scope.machine())
        return scopes

    def _directory_exists(self, path: str) -> bool:
        return Path(path).is_dir()

    def _read_profile_list(self) -> list[ProfileEntry]:
        """Read profile entries from the registry profile index."""
        entries: list[ProfileEntry] = []

        try:
            import winreg
        except ImportError:
            logger.error("winreg module not available")
            return entries

        try:
            key = winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, PROFILE_LIST_PATH, 0, winreg.KEY_READ)
        except OSError as e:
            logger.warning(f"Could not open profile list: {e}")
            return entries

        try:
            subkey_count, _, _ = winreg.QueryInfoKey(key)
            for i in range(subkey_count):
                try:
                    sid = winreg.EnumKey(key, i)
                    with winreg.OpenKey(key, sid) as subkey:
                        raw_path, _ = winreg.QueryValueEx(subkey, "ProfileImagePath")
                    entries.append(
                        ProfileEntry(security_id=sid, profile_path=os.path.expandvars(raw_path))
                    )
                except OSError as e:
                    logger.debug(f"Could not read profile entry {i}: {e}")
        finally:
            winreg.CloseKey(key)

        return entries

    def _read_profiles_wmi(self) -> list[ProfileEntry]:
        """Read profile entries using WMI (fallback method)."""
        entries: list[ProfileEntry] = []

        try:
            import wmi

            c = wmi.WMI()
            for profile in c.Win32_UserProfile():
                if getattr(profile, "Special", False):
                    continue
                entries.append(
                    ProfileEntry(security_id=profile.SID, profile_path=profile.LocalPath or "")
                )
        except ImportError:
            logger.debug("WMI module not available")
        except Exception as e:
            logger.error(f"Error getting profiles via WMI: {e}")

        return entries

    def _default_profile_dir(self) -> str:
        """Resolve the template profile directory."""
        value = self._read_profile_list_value("Default")
        if value:
            return os.path.expandvars(value)

        profiles_dir = self._read_profile_list_value("ProfilesDirectory")
        if profiles_dir:
            return str(PureWindowsPath(os.path.expandvars(profiles_dir)) / "Default")

        system_drive = os.environ.get("SystemDrive", "C:")
        return f"{system_drive}\\Users\\Default"

    def _read_profile_list_value(self, name: str) -> str | None:
        try:
            import winreg
        except ImportError:
            return None

        try:
            with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, PROFILE_LIST_PATH) as key:
                value, _ = winreg.QueryValueEx(key, name)
                return str(value)
        except OSError:
            return None


def create_profile_enumerator(mount_prefix: str = DEFAULT_MOUNT_PREFIX) -> ProfileEnumerator:
    """Create a profile enumerator.

    Returns:
        ProfileEnumerator instance
    """
    return ProfileEnumerator(mount_prefix=mount_prefix)
