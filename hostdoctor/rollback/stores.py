"""Value stores the rollback journal reads from and writes back to."""

from __future__ import annotations

import sys
from enum import Enum
from typing import Any, Protocol

if sys.platform == "win32":
    import winreg


class ValueKind(str, Enum):
    BINARY = "binary"
    DWORD = "dword"
    QWORD = "qword"
    STRING = "string"
    EXPAND_STRING = "expand_string"
    MULTI_STRING = "multi_string"
    NONE = "none"


class ValueStore(Protocol):
    """Keyed (root, path, name) value storage, e.g. the Windows registry.

    ``read`` returns ``None`` when the value does not exist and raises
    ``OSError`` when it cannot be read. ``delete`` of an absent value is
    not an error.
    """

    def read(self, root: str, path: str, name: str) -> tuple[Any, ValueKind] | None: ...

    def write(self, root: str, path: str, name: str, value: Any, kind: ValueKind) -> None: ...

    def delete(self, root: str, path: str, name: str) -> None: ...


class WindowsRegistryStore:
    """ValueStore over the Windows registry (HKCU / HKLM)."""

    def __init__(self) -> None:
        if sys.platform != "win32":
            raise OSError("The Windows registry is only available on Windows")
        self._roots = {
            "HKEY_CURRENT_USER": winreg.HKEY_CURRENT_USER,
            "HKCU": winreg.HKEY_CURRENT_USER,
            "HKEY_LOCAL_MACHINE": winreg.HKEY_LOCAL_MACHINE,
            "HKLM": winreg.HKEY_LOCAL_MACHINE,
        }
        self._to_winreg = {
            ValueKind.BINARY: winreg.REG_BINARY,
            ValueKind.DWORD: winreg.REG_DWORD,
            ValueKind.QWORD: winreg.REG_QWORD,
            ValueKind.STRING: winreg.REG_SZ,
            ValueKind.EXPAND_STRING: winreg.REG_EXPAND_SZ,
            ValueKind.MULTI_STRING: winreg.REG_MULTI_SZ,
            ValueKind.NONE: winreg.REG_NONE,
        }
        self._from_winreg = {v: k for k, v in self._to_winreg.items()}

    def _root(self, root: str) -> Any:
        try:
            return self._roots[root.upper()]
        except KeyError:
            raise OSError(f"Unknown root key: {root}") from None

    def read(self, root: str, path: str, name: str) -> tuple[Any, ValueKind] | None:
        try:
            with winreg.OpenKey(self._root(root), path, 0, winreg.KEY_READ) as key:
                value, reg_type = winreg.QueryValueEx(key, name)
        except FileNotFoundError:
            return None
        return value, self._from_winreg.get(reg_type, ValueKind.NONE)

    def write(self, root: str, path: str, name: str, value: Any, kind: ValueKind) -> None:
        with winreg.CreateKeyEx(self._root(root), path, 0, winreg.KEY_SET_VALUE) as key:
            winreg.SetValueEx(key, name, 0, self._to_winreg[kind], value)

    def delete(self, root: str, path: str, name: str) -> None:
        try:
            with winreg.OpenKey(self._root(root), path, 0, winreg.KEY_SET_VALUE) as key:
                winreg.DeleteValue(key, name)
        except FileNotFoundError:
            pass


def default_store() -> ValueStore | None:
    """The host's protected-value store, or None where there is none."""
    if sys.platform == "win32":
        return WindowsRegistryStore()
    return None
