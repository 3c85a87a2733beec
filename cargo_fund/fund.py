"""
Core implementation for the ``cargo fund`` command.

This module provides a command‑line interface for discovering funding
links declared by the dependencies of a Cargo workspace.  Dependencies are
enumerated with ``cargo metadata``; for every dependency whose
``package.repository`` points at Github, the repository's
``.github/FUNDING.yml`` is fetched through the Github API and turned into
canonical funding URLs.  Links are grouped across dependencies so that
each unique funding destination is printed once, followed by the crates
that declare it::

    ~/my-project (found funding links for 3 out of 41 dependencies)
    ├─── https://github.com/sponsors/dtolnay
    │    ├─ anyhow 1.0.28
    │    └─ syn 1.0.18
    └─── https://ko-fi.com/dannyguo
         └─ strsim 0.8.0

The default output is this tree, but JSON and Markdown formats are
available via command‑line switches.  A Github API token is required,
either in the ``CARGO_FUND_GITHUB_API_TOKEN`` environment variable or via
``--github-api-token``.
"""

from __future__ import annotations

import argparse
import json
import math
import sys
from collections.abc import Iterable, Sequence
from pathlib import Path

from cargo_fund.config import Settings
from cargo_fund.errors import CargoFundError, FetchError, InvalidTokenError, MalformedDeclarationError
from cargo_fund.funding import parse_declaration
from cargo_fund.github import DEFAULT_JOBS, DEFAULT_TIMEOUT, FUNDING_PATH, FundingFetcher, make_client
from cargo_fund.logging import configure_logging, get_logger
from cargo_fund.metadata import build_command, enumerate_dependencies, load_metadata, workspace_root
from cargo_fund.models import Attribution, CrateRef, Dependency, RepoKey, RunSummary

logger = get_logger("fund")

NO_FUNDING_NOTE = (
    "No funding links found for any dependencies.\n"
    "This could mean:\n"
    "  - No dependencies point at a Github repository in their 'package.repository' field.\n"
    "  - The repositories do not declare funding in .github/FUNDING.yml.\n"
    "  - Some lookups failed; run with -v to see why."
)


def _endpoints_for(key: RepoKey, fetcher: FundingFetcher) -> tuple[str, ...]:
    try:
        raw = fetcher.fetch(key)
    except InvalidTokenError:
        raise
    except FetchError as exc:
        logger.warning("could not fetch funding links for %s; skipping: %s", key, exc.reason)
        return ()
    if raw is None:
        return ()
    try:
        return tuple(parse_declaration(raw))
    except MalformedDeclarationError as exc:
        logger.warning("could not parse %s of %s; skipping: %s", FUNDING_PATH, key, exc)
        return ()


def resolve_links(
    dependencies: Sequence[Dependency],
    fetcher: FundingFetcher,
) -> list[tuple[CrateRef, tuple[str, ...]]]:
    """Look up the funding links of every dependency.

    Every distinct repository is submitted to the fetcher up front so the
    requests run concurrently; the results are then collected in
    enumeration order, so the output does not depend on which request
    finishes first.  Per-repository failures are logged and treated as
    "no funding links".

    Args:
        dependencies: Output of :func:`cargo_fund.metadata.enumerate_dependencies`.
        fetcher: The fetcher to submit lookups to.

    Returns:
        ``(crate, funding URLs)`` pairs in the order of ``dependencies``.
        Crates sharing a repository get the same tuple of URLs.

    Raises:
        InvalidTokenError: Github rejected the API token.
    """
    keys = list(dict.fromkeys(dep.repo_key for dep in dependencies if dep.repo_key is not None))
    logger.info(
        "looking up funding links for %d repositories (%d dependencies)",
        len(keys),
        len(dependencies),
    )
    for key in keys:
        fetcher.submit(key)
    endpoints = {key: _endpoints_for(key, fetcher) for key in keys}
    return [
        (dep.crate, endpoints[dep.repo_key] if dep.repo_key is not None else ())
        for dep in dependencies
    ]


def aggregate(resolved: Iterable[tuple[CrateRef, Iterable[str]]]) -> Attribution:
    """Group crates by funding URL.

    URLs appear in the order they are first seen, and crates under a URL
    in the order they were resolved.  A crate whose repository declares
    several platforms is listed under each of them.

    Args:
        resolved: ``(crate, funding URLs)`` pairs, in enumeration order.

    Returns:
        A mapping from funding URL to the crates that declare it.
    """
    attribution: Attribution = {}
    for crate, urls in resolved:
        for url in urls:
            crates = attribution.setdefault(url, [])
            if crate not in crates:
                crates.append(crate)
    return attribution


def summarize(dependencies: Sequence[Dependency], attribution: Attribution) -> RunSummary:
    attributed = {crate for crates in attribution.values() for crate in crates}
    return RunSummary(total=len(dependencies), attributed=len(attributed))


def summary_line(summary: RunSummary, root: str | None = None) -> str:
    text = f"found funding links for {summary.attributed} out of {summary.total} dependencies"
    return f"{root} ({text})" if root else text


def render_tree(attribution: Attribution, summary: RunSummary, root: str | None = None) -> str:
    """Render the funding report as a tree.

    Args:
        attribution: Funding URL to crates, as built by :func:`aggregate`.
        summary: Counts for the summary line.
        root: Workspace root to print in front of the summary.

    Returns:
        The summary line followed by one branch per funding URL, each with
        its crates as leaves.  No trailing newline.
    """
    lines = [summary_line(summary, root)]
    last_url_ix = len(attribution) - 1
    for url_ix, (url, crates) in enumerate(attribution.items()):
        is_last_url = url_ix == last_url_ix
        lines.append(f"{'└' if is_last_url else '├'}─── {url}")
        indent = "     " if is_last_url else "│    "
        last_crate_ix = len(crates) - 1
        for crate_ix, crate in enumerate(crates):
            branch = "└─" if crate_ix == last_crate_ix else "├─"
            lines.append(f"{indent}{branch} {crate.name} {crate.version}")
    return "\n".join(lines)


def format_as_plain(
    attribution: Attribution,
    summary: RunSummary,
    root: str | None = None,
    quiet: bool = False,
) -> str:
    """Format the report as a human‑readable tree.

    If no funding information is found, an explanatory note follows the
    summary line unless ``quiet`` is set.
    """
    tree = render_tree(attribution, summary, root)
    if attribution or quiet:
        return tree
    return f"{tree}\n{NO_FUNDING_NOTE}"


def format_as_json(attribution: Attribution, summary: RunSummary, root: str | None = None) -> str:
    """Format the report as a JSON string.

    The JSON holds the summary counts and one entry per funding URL, in the
    same order as the tree, listing the crates that declare it.
    """
    jsonable = {
        "workspace_root": root,
        "summary": {"total": summary.total, "attributed": summary.attributed},
        "funding": [
            {
                "url": url,
                "packages": [{"name": c.name, "version": c.version} for c in crates],
            }
            for url, crates in attribution.items()
        ],
    }
    return json.dumps(jsonable, indent=2)


def format_as_markdown(attribution: Attribution, summary: RunSummary, root: str | None = None) -> str:
    """Format the report as a Markdown document.

    Each funding URL is listed once with the crates that declare it.
    """
    lines: list[str] = ["# Funding Information\n", f"_{summary_line(summary, root)}_\n"]
    if not attribution:
        lines.append("No funding links found.")
        return "\n".join(lines)
    for url, crates in attribution.items():
        lines.append(f"* <{url}>")
        lines.append(f"  - Packages: {', '.join(str(crate) for crate in crates)}\n")
    return "\n".join(lines)


def run(settings: Settings) -> str:
    """Run the whole lookup and return the formatted report.

    The token is checked before anything else, so a missing token never
    leads to a ``cargo metadata`` run or a network request.

    Raises:
        CargoFundError: A fatal error (missing or invalid token, or
            ``cargo metadata`` failure).
    """
    token = settings.require_token()
    command = build_command(
        manifest_path=settings.manifest_path,
        quiet=settings.quiet,
        verbose=settings.verbose,
        color=settings.color,
        unstable_flags=settings.unstable_flags,
    )
    metadata = load_metadata(command)
    dependencies = enumerate_dependencies(metadata)
    client = make_client(token, timeout=settings.timeout, jobs=settings.jobs)
    with FundingFetcher(client, max_workers=settings.jobs) as fetcher:
        resolved = resolve_links(dependencies, fetcher)
    attribution = aggregate(resolved)
    summary = summarize(dependencies, attribution)
    root = workspace_root(metadata)
    if settings.output_format == "json":
        return format_as_json(attribution, summary, root)
    if settings.output_format == "markdown":
        return format_as_markdown(attribution, summary, root)
    return format_as_plain(attribution, summary, root, quiet=settings.quiet)


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1: {value!r}")
    return number


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}") from None
    if not math.isfinite(number) or number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive number of seconds: {value!r}")
    return number


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command‑line arguments.

    When run as ``cargo fund``, Cargo passes ``fund`` as the first argument;
    it is accepted and ignored.

    Args:
        argv: Optional list of arguments (for testing).  If omitted,
            defaults to ``sys.argv[1:]``.

    Returns:
        An ``argparse.Namespace`` containing parsed options.
    """
    if argv is None:
        argv = sys.argv[1:]
    if argv and argv[0] == "fund":
        argv = argv[1:]
    parser = argparse.ArgumentParser(
        prog="cargo fund",
        description="Display funding links for workspace dependencies.",
    )
    parser.add_argument(
        "--github-api-token",
        metavar="TOKEN",
        help=(
            "Github API token, which must have the scope `public_repo`. This option overrides the "
            "token provided in the CARGO_FUND_GITHUB_API_TOKEN environment variable."
        ),
    )
    parser.add_argument("--manifest-path", metavar="PATH", type=Path, help="Path to Cargo.toml")
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Use verbose output (-vv very verbose output).",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="No output printed to stdout other than the funding information.",
    )
    parser.add_argument("--color", metavar="WHEN", help="Coloring: auto, always, never")
    parser.add_argument(
        "-Z",
        dest="unstable_flags",
        metavar="FLAG",
        action="append",
        default=[],
        help="Unstable (nightly-only) flags to Cargo",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        type=_positive_int,
        default=DEFAULT_JOBS,
        help=f"Number of concurrent Github requests (default: {DEFAULT_JOBS}).",
    )
    parser.add_argument(
        "--timeout",
        type=_positive_float,
        default=DEFAULT_TIMEOUT,
        help=f"Timeout in seconds for each Github request (default: {DEFAULT_TIMEOUT}).",
    )
    output = parser.add_mutually_exclusive_group()
    output.add_argument(
        "--json",
        action="store_true",
        help="Output the results as JSON instead of a tree.",
    )
    output.add_argument(
        "--markdown",
        action="store_true",
        help="Output the results as Markdown instead of a tree.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``cargo-fund`` command.  Parses arguments and
    prints the formatted funding report.

    Args:
        argv: Optional list of arguments to parse (for testing).  If
            omitted, ``sys.argv[1:]`` is used.

    Returns:
        The process exit status.
    """
    args = parse_arguments(argv)
    configure_logging(args.verbose)
    settings = Settings.from_args(args)
    try:
        report = run(settings)
    except CargoFundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(report)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
