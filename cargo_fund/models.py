"""Value types shared by the enumerator, fetcher, parser and renderer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True, order=True)
class CrateRef:
    """One resolved dependency.  Different versions are different crates."""

    name: str
    version: str

    def __str__(self) -> str:
        return f"{self.name} {self.version}"


@dataclass(frozen=True, order=True)
class RepoKey:
    """A Github repository, used as the memoisation key for fetches."""

    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True)
class Dependency:
    """A crate together with its (normalised) repository URL, if any."""

    crate: CrateRef
    repository: str | None = None
    repo_key: RepoKey | None = None


class DeclarationFormat(str, Enum):
    """Shapes a funding declaration can arrive in."""

    #: ``.github/FUNDING.yml``: a mapping of platform name to identifier(s).
    YAML = "yaml"


@dataclass(frozen=True)
class RawDeclaration:
    content: str
    format: DeclarationFormat = DeclarationFormat.YAML


@dataclass(frozen=True)
class RunSummary:
    total: int
    attributed: int


# Canonical funding URL -> crates declaring it, both in first-seen order.
Attribution = dict[str, list[CrateRef]]

__all__ = [
    "Attribution",
    "CrateRef",
    "DeclarationFormat",
    "Dependency",
    "RawDeclaration",
    "RepoKey",
    "RunSummary",
]
