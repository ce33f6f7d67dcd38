"""Path containment and blocked-command checks for the built-in tools."""

import os
import re
from pathlib import Path

from .errors import BlockedCommand, SandboxViolation

# Word boundaries for blocked commands: whitespace or a shell separator.
_LEFT = r"(?<![^\s;&|(`])"
_RIGHT = r"(?![^\s;&|)`])"


def _expand_root(path: str, base: Path) -> Path:
    expanded = Path(path).expanduser()
    if not expanded.is_absolute():
        expanded = base / expanded
    return expanded.resolve()


class Sandbox:
    """Restricts tool file access to allowed roots and rejects blocked commands.

    Blocked commands are always enforced; path containment only when
    ``enabled`` is true.
    """

    def __init__(
        self,
        base_dir: str | os.PathLike | None = None,
        *,
        enabled: bool = True,
        allowed_paths: list[str] = ("./",),
        blocked_paths: list[str] = (),
        blocked_commands: list[str] = (),
    ):
        self.base_dir = Path(base_dir or os.getcwd()).resolve()
        self.enabled = enabled
        self.allowed_roots = [_expand_root(p, self.base_dir) for p in allowed_paths]
        self.blocked_roots = [_expand_root(p, self.base_dir) for p in blocked_paths]
        self.blocked_commands = list(blocked_commands)
        self._blocked_res = [
            (pattern, re.compile(_LEFT + re.escape(pattern.strip()) + _RIGHT))
            for pattern in self.blocked_commands
            if pattern.strip()
        ]

    def resolve(self, path: str) -> Path:
        """Resolve a tool path against the base directory.

        Symlinks are followed before the containment check.

        Raises:
            SandboxViolation: If the path falls outside every allowed root or
                inside a blocked one.
        """
        p = Path(path).expanduser()
        resolved = (p if p.is_absolute() else self.base_dir / p).resolve()
        if not self.enabled:
            return resolved

        for root in self.blocked_roots:
            if resolved.is_relative_to(root):
                raise SandboxViolation(path, f"inside blocked path {root}")
        if not any(resolved.is_relative_to(root) for root in self.allowed_roots):
            raise SandboxViolation(path, "outside allowed paths")
        return resolved

    def check_command(self, command: str) -> None:
        """Raise BlockedCommand if ``command`` contains a blocked pattern."""
        normalized = " ".join(command.split())
        for pattern, regex in self._blocked_res:
            if regex.search(normalized):
                raise BlockedCommand(command, pattern)
