"""The vigilante RPC service."""

from __future__ import annotations

from dataclasses import dataclass

VERSION_STRING = "0.0.1"
VERSION_MAJOR = 0
VERSION_MINOR = 0
VERSION_PATCH = 1


@dataclass(frozen=True)
class VersionResponse:
    """The public API version."""

    version_string: str
    major: int
    minor: int
    patch: int


class VigilanteService:
    """Answers requests to the vigilante API."""

    def version(self) -> VersionResponse:
        """Return the public API version."""
        return VersionResponse(VERSION_STRING, VERSION_MAJOR, VERSION_MINOR, VERSION_PATCH)