"""Registry action - set or delete values under one key.

Values are written by generating a .reg file in the run's scratch
directory and importing it with `reg.exe import`, so a mutation with many
values is still a single tool invocation. The same mechanism restores
the captured prior values on rollback.

Paths are relative to the scope's registry root: HKLM for the machine
scope, HKU\\<mount name> for profile scopes.
"""

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from src.actions.base import Action, ActionContext
from src.actions.exit_codes import TOOL_REG
from src.core.models import ActionKind, CommandResult, Scope
from src.core.registry import HIVE_ALIASES, RegistryReading, join_registry_path, split_registry_path

logger = logging.getLogger("provisionr.actions.registry")

REG_FILE_HEADER = "Windows Registry Editor Version 5.00"

# winreg value type constants, kept here so the module imports anywhere
REG_SZ = 1
REG_EXPAND_SZ = 2
REG_BINARY = 3
REG_DWORD = 4
REG_MULTI_SZ = 7
REG_QWORD = 11

VALUE_TYPES = {
    "REG_SZ": REG_SZ,
    "REG_EXPAND_SZ": REG_EXPAND_SZ,
    "REG_BINARY": REG_BINARY,
    "REG_DWORD": REG_DWORD,
    "REG_MULTI_SZ": REG_MULTI_SZ,
    "REG_QWORD": REG_QWORD,
}
VALUE_TYPE_NAMES = {code: name for name, code in VALUE_TYPES.items()}


def _hex_bytes(data: bytes) -> str:
    return ",".join(f"{b:02x}" for b in data)


def _utf16z(text: str) -> bytes:
    return (text + "\0").encode("utf-16-le")


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


@dataclass(frozen=True)
class RegistryValue:
    """A typed registry value. data=None means the value is deleted.

    Attributes:
        value_type: One of REG_SZ, REG_EXPAND_SZ, REG_BINARY, REG_DWORD,
            REG_MULTI_SZ, REG_QWORD
        data: Value data (str, int, bytes or list of str), or None to delete
    """

    value_type: str = "REG_SZ"
    data: Any = None

    def __post_init__(self) -> None:
        value_type = self.value_type.upper()
        if value_type not in VALUE_TYPES:
            raise ValueError(f"Unsupported registry value type: {self.value_type}")
        object.__setattr__(self, "value_type", value_type)

        data = self.data
        if data is None:
            return
        if value_type in ("REG_DWORD", "REG_QWORD"):
            data = int(data, 0) if isinstance(data, str) else int(data)
        elif value_type == "REG_BINARY":
            if isinstance(data, str):
                data = bytes.fromhex(data.replace(",", "").replace(" ", ""))
            data = bytes(data)
        elif value_type == "REG_MULTI_SZ":
            if isinstance(data, str):
                data = [data]
            data = tuple(str(item) for item in data)
        else:
            data = str(data)
        object.__setattr__(self, "data", data)

    @property
    def is_delete(self) -> bool:
        return self.data is None

    @property
    def type_code(self) -> int:
        return VALUE_TYPES[self.value_type]

    @classmethod
    def from_reading(cls, reading: RegistryReading) -> "RegistryValue":
        """Build a value from what the registry currently holds."""
        type_name = VALUE_TYPE_NAMES.get(reading.value_type)
        if type_name is None:
            # Unusual types (REG_NONE, REG_LINK...) are restored as raw bytes
            data = reading.data if isinstance(reading.data, bytes) else b""
            return cls("REG_BINARY", data)
        return cls(type_name, reading.data)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RegistryValue":
        """Parse a plan entry: {"type": "REG_DWORD", "data": 1} or null to delete."""
        if data is None:
            return cls("REG_SZ", None)
        if "data" not in data:
            raise ValueError(f"registry value {data!r} has no 'data' (use null to delete)")
        return cls(value_type=data.get("type", "REG_SZ"), data=data["data"])

    def to_dict(self) -> dict[str, Any]:
        data = self.data
        if isinstance(data, bytes):
            data = data.hex()
        elif isinstance(data, tuple):
            data = list(data)
        return {"type": self.value_type, "data": data}

    def matches(self, reading: RegistryReading | None) -> bool:
        """Check whether the registry already holds this value."""
        if self.is_delete:
            return reading is None
        if reading is None or reading.value_type != self.type_code:
            return False

        if self.value_type == "REG_DWORD":
            return int(reading.data) & 0xFFFFFFFF == self.data & 0xFFFFFFFF
        if self.value_type == "REG_QWORD":
            return int(reading.data) & 0xFFFFFFFFFFFFFFFF == self.data & 0xFFFFFFFFFFFFFFFF
        if self.value_type == "REG_MULTI_SZ":
            return tuple(reading.data or ()) == self.data
        if self.value_type == "REG_BINARY":
            return bytes(reading.data or b"") == self.data
        return reading.data == self.data

    def to_reg_data(self) -> str:
        """Render the right-hand side of a .reg file value line."""
        if self.is_delete:
            return "-"
        if self.value_type == "REG_DWORD":
            return f"dword:{self.data & 0xFFFFFFFF:08x}"
        if self.value_type == "REG_QWORD":
            return f"hex(b):{_hex_bytes((self.data & 0xFFFFFFFFFFFFFFFF).to_bytes(8, 'little'))}"
        if self.value_type == "REG_BINARY":
            return f"hex:{_hex_bytes(self.data)}"
        if self.value_type == "REG_EXPAND_SZ":
            return f"hex(2):{_hex_bytes(_utf16z(self.data))}"
        if self.value_type == "REG_MULTI_SZ":
            payload = b"".join(_utf16z(item) for item in self.data) + "\0".encode("utf-16-le")
            return f"hex(7):{_hex_bytes(payload)}"
        if "\n" in self.data or "\r" in self.data:
            # Quoted strings cannot span lines in a .reg file
            return f"hex(1):{_hex_bytes(_utf16z(self.data))}"
        return f'"{_escape(self.data)}"'


def render_reg_line(name: str, value: RegistryValue) -> str:
    """Render one value line; the default value is written as @."""
    label = "@" if name == "" else f'"{_escape(name)}"'
    return f"{label}={value.to_reg_data()}"


def render_reg_file(key_path: str, values: list[tuple[str, RegistryValue]]) -> str:
    """Render a complete .reg document for one key.

    Args:
        key_path: Full key path (e.g. HKU\\Provisionr_Default\\Software\\X)
        values: (name, value) pairs to write or delete
    """
    hive, subkey = split_registry_path(key_path)
    lines = [REG_FILE_HEADER, "", f"[{hive}\\{subkey}]"]
    lines.extend(render_reg_line(name, value) for name, value in values)
    lines.append("")
    return "\r\n".join(lines) + "\r\n"


@dataclass(frozen=True)
class RegistryMutation(Action):
    """Set or delete values under one registry key.

    Attributes:
        path: Key path relative to the scope root (e.g. Software\\Policies\\X)
        values: (name, RegistryValue) pairs; a dict is accepted as well
        mandatory: Whether a failure is a hard failure
    """

    path: str
    values: tuple[tuple[str, RegistryValue], ...] = ()
    mandatory: bool = False

    kind = ActionKind.REGISTRY_MUTATION
    tool = TOOL_REG
    is_registry_action = True
    summary_counter = "modified"

    def __post_init__(self) -> None:
        path = join_registry_path(self.path or "")
        if not path:
            raise ValueError("RegistryMutation requires a key path")
        head = path.split("\\", 1)[0].upper()
        if head in HIVE_ALIASES:
            raise ValueError(f"Registry path must be relative to the scope root: {self.path}")
        object.__setattr__(self, "path", path)

        values = self.values
        if isinstance(values, dict):
            values = values.items()
        normalized = tuple(
            (str(name), value if isinstance(value, RegistryValue) else RegistryValue.from_dict(value))
            for name, value in values
        )
        if not normalized:
            raise ValueError(f"RegistryMutation for {path} has no values")
        object.__setattr__(self, "values", normalized)

    @property
    def description(self) -> str:
        names = ", ".join(name or "(default)" for name, _ in self.values)
        return f"Set registry {self.path} [{names}]"

    @property
    def is_compensable(self) -> bool:
        return True

    def key_path(self, scope: Scope) -> str:
        """Full key path for a scope."""
        return join_registry_path(scope.registry_root, self.path)

    def is_already_satisfied(self, scope: Scope, ctx: ActionContext) -> bool:
        key_path = self.key_path(scope)
        return all(
            value.matches(ctx.registry.read_value(key_path, name)) for name, value in self.values
        )

    def apply(self, scope: Scope, ctx: ActionContext) -> CommandResult:
        return self._import(scope, ctx, list(self.values), "apply")

    def capture_state(self, scope: Scope, ctx: ActionContext) -> dict[str, Any]:
        key_path = self.key_path(scope)
        previous: list[tuple[str, RegistryValue]] = []
        for name, _ in self.values:
            reading = ctx.registry.read_value(key_path, name)
            if reading is None:
                previous.append((name, RegistryValue("REG_SZ", None)))
            else:
                previous.append((name, RegistryValue.from_reading(reading)))
        return {"previous": previous}

    def compensate(self, scope: Scope, ctx: ActionContext, state: dict[str, Any]) -> None:
        previous = state.get("previous") or []
        if not previous:
            return
        result = self._import(scope, ctx, previous, "restore")
        self._require_success(result, f"reg import (restore {self.path})")

    def _import(
        self,
        scope: Scope,
        ctx: ActionContext,
        values: list[tuple[str, RegistryValue]],
        purpose: str,
    ) -> CommandResult:
        reg_file = self._write_reg_file(scope, ctx.scratch_dir, values, purpose)
        logger.debug(f"Importing {reg_file} into {self.key_path(scope)}")
        return ctx.runner.run(["reg.exe", "import", str(reg_file)], timeout=ctx.timeout)

    def _write_reg_file(
        self,
        scope: Scope,
        scratch_dir: Path,
        values: list[tuple[str, RegistryValue]],
        purpose: str,
    ) -> Path:
        scratch_dir.mkdir(parents=True, exist_ok=True)
        reg_file = scratch_dir / f"{purpose}-{scope.key}-{uuid.uuid4().hex[:8]}.reg"
        content = render_reg_file(self.key_path(scope), values)
        # reg.exe expects UTF-16 with BOM
        with open(reg_file, "w", encoding="utf-16", newline="") as f:
            f.write(content)
        return reg_file

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "path": self.path,
            "values": {
                name: None if value.is_delete else value.to_dict() for name, value in self.values
            },
        }
