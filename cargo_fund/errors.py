"""Exceptions raised by ``cargo_fund``.

Only :class:`MissingTokenError`, :class:`InvalidTokenError` and
:class:`MetadataError` abort a run.  Everything else is scoped to a
single repository and is folded into "no funding links" by
:func:`cargo_fund.fund.resolve_links`.
"""

from __future__ import annotations

GITHUB_TOKEN_HELP = (
    "Invalid Github API token. Create a token with the `public_repo` and "
    "`user` scopes at https://github.com/settings/tokens."
)

MISSING_TOKEN_HELP = (
    "Github API token must be provided through the CARGO_FUND_GITHUB_API_TOKEN "
    "environment variable or the --github-api-token flag."
)


class CargoFundError(Exception):
    """Base exception for all ``cargo_fund`` errors."""


class MissingTokenError(CargoFundError):
    """No Github API token was supplied."""

    def __init__(self, message: str = MISSING_TOKEN_HELP):
        super().__init__(message)


class MetadataError(CargoFundError):
    """``cargo metadata`` could not be run or its output could not be read."""


class FetchError(CargoFundError):
    """A funding declaration could not be retrieved for one repository.

    Attributes:
        repo: The ``owner/name`` path of the repository.
        reason: Short description of the failure.
    """

    def __init__(self, repo: str, reason: str):
        super().__init__(f"{repo}: {reason}")
        self.repo = repo
        self.reason = reason


class InvalidTokenError(FetchError):
    """The Github API rejected the token.  Escalated to a fatal error."""

    def __init__(self, repo: str, reason: str = GITHUB_TOKEN_HELP):
        super().__init__(repo, reason)

    def __str__(self) -> str:
        return self.reason


class MalformedDeclarationError(CargoFundError):
    """A funding declaration could not be parsed at all."""
