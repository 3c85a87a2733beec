"""
cargo_fund package
==================

This package exposes the ``cargo-fund`` command line utility via the
console script defined in ``pyproject.toml``.  Once installed, Cargo
picks it up as the ``cargo fund`` subcommand.  Users should import
functionality from :mod:`cargo_fund.fund` rather than this top‑level
package.
"""

__version__ = "0.2.0"

__all__ = ["fund"]
