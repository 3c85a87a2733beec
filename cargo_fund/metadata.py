"""
Dependency enumeration via ``cargo metadata``.

``cargo metadata --format-version 1`` resolves the whole dependency graph of
a workspace.  This module runs it, then reduces its ``packages`` list to the
dependencies worth looking up: one :class:`~cargo_fund.models.Dependency`
per distinct crate name and version, with the workspace's own members left
out.
"""

from __future__ import annotations

import json
import os
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from cargo_fund.errors import MetadataError
from cargo_fund.funding import split_absolute_url, with_default_scheme
from cargo_fund.logging import get_logger
from cargo_fund.models import CrateRef, Dependency, RepoKey

logger = get_logger("metadata")

GITHUB_HOSTS: set[str] = {"github.com", "www.github.com"}


def build_command(
    manifest_path: Path | None = None,
    quiet: bool = False,
    verbose: int = 0,
    color: str | None = None,
    unstable_flags: Sequence[str] = (),
) -> list[str]:
    """Build the ``cargo metadata`` command line.

    The Cargo binary is taken from the ``CARGO`` environment variable, which
    Cargo sets when it runs a subcommand, and defaults to ``cargo``.
    """
    command = [os.environ.get("CARGO") or "cargo", "metadata", "--format-version", "1"]
    if quiet:
        command.append("-q")
    if manifest_path is not None:
        command.extend(["--manifest-path", str(manifest_path)])
    command.extend(["-v"] * verbose)
    if color:
        command.extend(["--color", color])
    for flag in unstable_flags:
        command.extend(["-Z", flag])
    return command


def load_metadata(command: Sequence[str]) -> dict[str, Any]:
    """Run ``cargo metadata`` and decode its JSON output.

    Cargo's own diagnostics are passed through to our stderr.

    Args:
        command: The command line from :func:`build_command`.

    Returns:
        The decoded metadata document.

    Raises:
        MetadataError: Cargo could not be started, exited unsuccessfully,
            or printed something that is not a metadata document.
    """
    logger.debug("running %s", " ".join(command))
    try:
        completed = subprocess.run(
            list(command),
            stdout=subprocess.PIPE,
            stderr=None,
            check=False,
        )
    except OSError as exc:
        raise MetadataError(f"error running cargo metadata: {exc}") from exc
    if completed.returncode != 0:
        raise MetadataError(f"cargo metadata returned exit status {completed.returncode}")
    try:
        metadata = json.loads(completed.stdout.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise MetadataError(f"error parsing cargo metadata output: {exc}") from exc
    if not isinstance(metadata, dict) or not isinstance(metadata.get("packages"), list):
        raise MetadataError("error parsing cargo metadata output: no package list")
    return metadata


def normalize_repository_url(value: str) -> str | None:
    """Canonicalise a ``package.repository`` value.

    Any absolute URL with a host is kept as written, whatever its scheme
    (``git://``, ``ssh://git@...``, ``git+https://``).  A value without a
    scheme gets ``https://`` prepended first.

    Returns:
        The URL, or ``None`` if it still does not parse strictly.
    """
    value = value.strip()
    if not value:
        return None
    candidate = with_default_scheme(value)
    return candidate if split_absolute_url(candidate) is not None else None


def repo_key_from_url(url: str) -> RepoKey | None:
    """Extract the Github ``owner/name`` pair from a repository URL.

    Args:
        url: A URL from :func:`normalize_repository_url`.

    Returns:
        The :class:`RepoKey`, or ``None`` if the URL is not a Github
        repository URL.
    """
    parts = urlsplit(url)
    if (parts.hostname or "").lower() not in GITHUB_HOSTS:
        return None
    segments = [segment for segment in parts.path.split("/") if segment]
    if len(segments) < 2:
        return None
    owner, name = segments[0], segments[1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    if not owner or not name:
        return None
    return RepoKey(owner, name)


def enumerate_dependencies(metadata: Mapping[str, Any]) -> list[Dependency]:
    """Turn resolver output into the ordered list of dependencies to look up.

    Workspace members are skipped: they are the project being analysed, not
    its dependencies.  A repository URL that cannot be parsed, even after
    ``https://`` is prepended, is treated as absent.  The crate is still
    returned so that it counts towards the total.

    Args:
        metadata: A ``cargo metadata`` document.

    Returns:
        Dependencies in resolver order, one per distinct name and version.
    """
    members = set(metadata.get("workspace_members") or [])
    seen: set[CrateRef] = set()
    dependencies: list[Dependency] = []
    for package in metadata.get("packages", []):
        if package.get("id") in members:
            continue
        crate = CrateRef(str(package["name"]), str(package["version"]))
        if crate in seen:
            continue
        seen.add(crate)
        repository = package.get("repository")
        url = normalize_repository_url(repository) if isinstance(repository, str) else None
        repo_key = repo_key_from_url(url) if url else None
        if repository and url is None:
            logger.debug("%s: unparseable repository URL %r", crate, repository)
        dependencies.append(Dependency(crate, url, repo_key))
    return dependencies


def workspace_root(metadata: Mapping[str, Any]) -> str | None:
    root = metadata.get("workspace_root")
    return str(root) if root else None


__all__ = [
    "build_command",
    "enumerate_dependencies",
    "load_metadata",
    "normalize_repository_url",
    "repo_key_from_url",
    "workspace_root",
]
