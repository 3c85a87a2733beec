"""Run configuration assembled from the command line and the environment."""

from __future__ import annotations

import argparse
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from cargo_fund.errors import MissingTokenError
from cargo_fund.github import DEFAULT_JOBS, DEFAULT_TIMEOUT

# Checked in order; the first non-empty value wins.
TOKEN_ENV_VARS: tuple[str, ...] = ("CARGO_FUND_GITHUB_API_TOKEN", "GITHUB_TOKEN")


@dataclass(frozen=True)
class Settings:
    github_api_token: str | None = None
    manifest_path: Path | None = None
    verbose: int = 0
    quiet: bool = False
    color: str | None = None
    unstable_flags: tuple[str, ...] = ()
    jobs: int = DEFAULT_JOBS
    timeout: float = DEFAULT_TIMEOUT
    output_format: str = "plain"

    @classmethod
    def from_args(
        cls,
        args: argparse.Namespace,
        environ: Mapping[str, str] | None = None,
    ) -> Settings:
        """Build settings from parsed arguments.

        The ``--github-api-token`` flag overrides the token found in the
        environment.

        Args:
            args: The result of :func:`cargo_fund.fund.parse_arguments`.
            environ: Environment to read the token from; defaults to
                ``os.environ``.
        """
        environ = os.environ if environ is None else environ
        token = args.github_api_token
        if not token:
            token = next((environ[name] for name in TOKEN_ENV_VARS if environ.get(name)), None)
        if args.json:
            output_format = "json"
        elif args.markdown:
            output_format = "markdown"
        else:
            output_format = "plain"
        return cls(
            github_api_token=token,
            manifest_path=args.manifest_path,
            verbose=args.verbose,
            quiet=args.quiet,
            color=args.color,
            unstable_flags=tuple(args.unstable_flags),
            jobs=args.jobs,
            timeout=args.timeout,
            output_format=output_format,
        )

    def require_token(self) -> str:
        """Return the API token.

        Raises:
            MissingTokenError: No token was configured.
        """
        if not self.github_api_token:
            raise MissingTokenError()
        return self.github_api_token


__all__ = ["Settings", "TOKEN_ENV_VARS"]
