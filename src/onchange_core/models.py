"""Shared data models for onchange_core."""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

# Names usable inside {braces} in message and command templates
VARIABLE_NAMES = frozenset(
    ["path", "rpath", "dir", "rdir", "name", "ext", "name.ext", "pwd", "rname"]
)


class ExecutionMode(str, Enum):
    """Whether command execution blocks further event processing."""

    SERIAL = "serial"
    CONCURRENT = "concurrent"


class DispatchState(str, Enum):
    """Lifecycle of a single change event inside the dispatcher."""

    DETECTED = "detected"
    RESOLVED = "resolved"
    SKIPPED = "skipped"
    REPORTED = "reported"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class WatchTarget:
    """A path given on the command line."""

    path: Path
    """File or directory to watch."""

    recursive: bool = False
    """Watch the whole tree below a directory instead of direct children only."""


@dataclass(frozen=True)
class RawEvent:
    """A single filesystem notification, before debouncing."""

    path: str
    """Absolute path of the changed file."""

    observed_at: float
    """time.monotonic() when the notification arrived."""


@dataclass(frozen=True)
class ChangeEvent:
    """A settled change for one path, emitted once per debounce window."""

    path: str
    first_seen: float
    last_seen: float


@dataclass(frozen=True)
class PathVariables:
    """Template variables derived from a changed path and the working directory."""

    path: str
    rpath: str
    dir: str
    rdir: str
    name: str
    ext: str
    name_ext: str
    pwd: str
    rname: str

    @classmethod
    def from_path(cls, path: str | Path, cwd: str | Path) -> "PathVariables":
        """Compute variables for an absolute path.

        Args:
            path: Changed path (made absolute against cwd if relative)
            cwd: Working directory used for the relative variants

        Returns:
            PathVariables with ext stripped of its leading dot
        """
        cwd = os.path.abspath(cwd)
        path = os.path.join(cwd, path) if not os.path.isabs(path) else os.fspath(path)
        path = os.path.normpath(path)
        parent = os.path.dirname(path) or os.sep
        p = Path(path)
        name_ext = p.name
        rdir = os.path.relpath(parent, cwd)
        return cls(
            path=path,
            rpath=os.path.relpath(path, cwd),
            dir=parent,
            rdir=rdir,
            name=p.stem,
            ext=p.suffix[1:],
            name_ext=name_ext,
            pwd=cwd,
            rname=os.path.join(rdir, name_ext),
        )

    def as_dict(self) -> dict[str, str]:
        """Return the variables keyed by their template names."""
        return {
            "path": self.path,
            "rpath": self.rpath,
            "dir": self.dir,
            "rdir": self.rdir,
            "name": self.name,
            "ext": self.ext,
            "name.ext": self.name_ext,
            "pwd": self.pwd,
            "rname": self.rname,
        }


@dataclass(frozen=True)
class CommandOutcome:
    """Result of running one rendered command."""

    path: str
    command: str
    returncode: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.returncode == 0

    def describe(self) -> str:
        """Short human-readable failure reason."""
        if self.error is not None:
            return self.error
        return f"exit code {self.returncode}"
