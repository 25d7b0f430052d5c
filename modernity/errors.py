"""Error categories raised while measuring a crate."""

from __future__ import annotations

from typing import Optional, Tuple


class ModernityError(RuntimeError):
    """Base class for every error raised by modernity."""


class FatalError(ModernityError):
    """Aborts the whole run; no table is written for the crate."""

    exit_code = 1


class LibraryNotFound(FatalError):
    """The registry does not know the requested crate."""

    exit_code = 3

    def __init__(self, name: str) -> None:
        super().__init__(f"crate '{name}' was not found in the registry")
        self.name = name


class NoPublishedVersions(FatalError):
    """No release is left once withdrawn and out-of-range releases are dropped."""

    exit_code = 4

    def __init__(self, name: str, detail: str | None = None) -> None:
        message = f"crate '{name}' has no published versions"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.name = name


class RegistryUnavailable(FatalError):
    """The registry could not be reached or returned an unusable response."""

    exit_code = 5


class MissingExpansionFile(FatalError):
    """An expected standard-library expansion artifact is absent."""

    exit_code = 6

    def __init__(self, path: object) -> None:
        super().__init__(f"expansion artifact not found: {path}")
        self.path = path


class MalformedExpansion(FatalError):
    """An expansion artifact cannot be parsed as Rust source."""

    exit_code = 7

    def __init__(self, path: object, reason: str) -> None:
        super().__init__(f"expansion artifact {path} is malformed: {reason}")
        self.path = path
        self.reason = reason


class NoVersionsAnalyzed(FatalError):
    """Every selected version failed to fetch or parse."""

    exit_code = 8

    def __init__(self, name: str, failures: int) -> None:
        super().__init__(f"none of the {failures} selected versions of '{name}' could be analyzed")
        self.name = name
        self.failures = failures


class VersionError(ModernityError):
    """Drops a single version from the report."""

    def __init__(self, version: str, reason: str) -> None:
        super().__init__(f"{version}: {reason}")
        self.version = version
        self.reason = reason


class FetchFailure(VersionError):
    """Downloading or extracting the version's archive failed."""


class VersionParseFailure(VersionError):
    """No reachable source file of the version could be parsed."""


class ParseFailure(ModernityError):
    """A single source file could not be parsed; the file is skipped."""

    def __init__(self, file: str, position: Optional[Tuple[int, int]], reason: str = "syntax error") -> None:
        where = f"{file}:{position[0]}:{position[1]}" if position else file
        super().__init__(f"{where}: {reason}")
        self.file = file
        self.position = position
        self.reason = reason


class MacroExpansionError(ModernityError):
    """A macro invocation could not be expanded."""


class MacroExpansionOverflow(MacroExpansionError):
    """Recursive macro expansion exceeded the configured depth."""

    def __init__(self, name: str, depth: int) -> None:
        super().__init__(f"expansion of '{name}!' exceeded the recursion limit of {depth}")
        self.name = name
        self.depth = depth


__all__ = [
    "FatalError",
    "FetchFailure",
    "LibraryNotFound",
    "MacroExpansionError",
    "MacroExpansionOverflow",
    "MalformedExpansion",
    "MissingExpansionFile",
    "ModernityError",
    "NoPublishedVersions",
    "NoVersionsAnalyzed",
    "ParseFailure",
    "RegistryUnavailable",
    "VersionError",
    "VersionParseFailure",
]
