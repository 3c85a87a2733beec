"""Aggregation, rendering and the ``cargo fund`` command."""

from __future__ import annotations

import json
import logging
import threading

import pytest
import requests
from github import BadCredentialsException

from cargo_fund import fund
from cargo_fund.errors import MetadataError
from cargo_fund.fund import aggregate, main, parse_arguments, render_tree, resolve_links, summarize
from cargo_fund.github import FundingFetcher
from cargo_fund.metadata import enumerate_dependencies
from cargo_fund.models import CrateRef, Dependency, RepoKey, RunSummary
from tests._fixtures.fakes import FakeGithub, metadata_for, package

A = CrateRef("a", "1.0.0")
B = CrateRef("b", "2.0.0")
C = CrateRef("c", "3.0.0")


def _dep(crate: CrateRef, owner: str | None = None) -> Dependency:
    if owner is None:
        return Dependency(crate)
    return Dependency(crate, f"https://github.com/{owner}/{crate.name}", RepoKey(owner, crate.name))


def test_aggregate_keeps_first_seen_order() -> None:
    attribution = aggregate(
        [
            (A, ("https://x.test/1", "https://x.test/2")),
            (B, ()),
            (C, ("https://x.test/2", "https://x.test/3")),
        ]
    )
    assert list(attribution) == ["https://x.test/1", "https://x.test/2", "https://x.test/3"]
    assert attribution["https://x.test/2"] == [A, C]


def test_aggregate_lists_a_crate_once_per_url() -> None:
    attribution = aggregate([(A, ("https://x.test/1", "https://x.test/1")), (A, ("https://x.test/1",))])
    assert attribution == {"https://x.test/1": [A]}


def test_summary_counts_distinct_attributed_crates() -> None:
    deps = [_dep(A, "o"), _dep(B, "o"), _dep(C)]
    attribution = {"https://x.test/1": [A, B], "https://x.test/2": [A]}
    summary = summarize(deps, attribution)
    assert summary == RunSummary(total=3, attributed=2)
    assert summary.attributed <= summary.total


def test_render_tree() -> None:
    attribution = {
        "https://github.com/sponsors/dtolnay": [CrateRef("anyhow", "1.0.28"), CrateRef("syn", "1.0.18")],
        "https://ko-fi.com/dannyguo": [CrateRef("strsim", "0.8.0")],
    }
    expected = (
        "/src/app (found funding links for 3 out of 10 dependencies)\n"
        "├─── https://github.com/sponsors/dtolnay\n"
        "│    ├─ anyhow 1.0.28\n"
        "│    └─ syn 1.0.18\n"
        "└─── https://ko-fi.com/dannyguo\n"
        "     └─ strsim 0.8.0"
    )
    summary = RunSummary(total=10, attributed=3)
    assert render_tree(attribution, summary, "/src/app") == expected
    assert render_tree(attribution, summary, "/src/app") == render_tree(attribution, summary, "/src/app")


def test_render_tree_without_root_or_links() -> None:
    summary = RunSummary(total=4, attributed=0)
    assert render_tree({}, summary) == "found funding links for 0 out of 4 dependencies"


def test_shared_repository_yields_identical_links(github) -> None:
    github.files["o/shared"] = "github: o\nko_fi: o\n"
    key = RepoKey("o", "shared")
    deps = [Dependency(A, None, key), Dependency(B, None, key)]
    with FundingFetcher(github) as fetcher:
        resolved = resolve_links(deps, fetcher)
    assert resolved[0][1] == resolved[1][1] == ("https://github.com/sponsors/o", "https://ko-fi.com/o")
    assert len(github.calls) == 1


def test_order_does_not_depend_on_completion_order() -> None:
    c_done = threading.Event()
    b_done = threading.Event()
    completed: list[str] = []

    def respond(name, wait_for, done):
        def inner():
            if wait_for is not None:
                assert wait_for.wait(5)
            completed.append(name)
            if done is not None:
                done.set()
            return "github: everyone\n"

        return inner

    github = FakeGithub(
        {
            "o/a": respond("a", b_done, None),
            "o/b": respond("b", c_done, b_done),
            "o/c": respond("c", None, c_done),
        }
    )
    with FundingFetcher(github, max_workers=3) as fetcher:
        resolved = resolve_links([_dep(A, "o"), _dep(B, "o"), _dep(C, "o")], fetcher)
    assert completed == ["c", "b", "a"]
    attribution = aggregate(resolved)
    assert attribution == {"https://github.com/sponsors/everyone": [A, B, C]}


def test_failures_degrade_to_no_links(github, caplog) -> None:
    github.files["o/a"] = requests.exceptions.ReadTimeout("read timed out")
    github.files["o/b"] = "github: [unclosed\n"
    github.files["o/c"] = "github: c\n"
    with caplog.at_level(logging.WARNING, logger="cargo_fund"):
        with FundingFetcher(github) as fetcher:
            resolved = resolve_links([_dep(A, "o"), _dep(B, "o"), _dep(C, "o")], fetcher)
    assert resolved == [(A, ()), (B, ()), (C, ("https://github.com/sponsors/c",))]
    messages = [record.getMessage() for record in caplog.records if record.levelno == logging.WARNING]
    assert len(messages) == 2
    assert "o/a" in messages[0] and "read timed out" in messages[0]
    assert "o/b" in messages[1]


def test_missing_file_is_not_a_warning(github, caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="cargo_fund"):
        with FundingFetcher(github) as fetcher:
            assert resolve_links([_dep(A, "o")], fetcher) == [(A, ())]
    assert not caplog.records


def test_parse_arguments_accepts_cargo_subcommand_name() -> None:
    args = parse_arguments(["fund", "--manifest-path", "x/Cargo.toml", "-vv", "-Z", "a", "-Z", "b"])
    assert str(args.manifest_path) == "x/Cargo.toml"
    assert args.verbose == 2
    assert args.unstable_flags == ["a", "b"]


def test_json_and_markdown_are_exclusive() -> None:
    with pytest.raises(SystemExit):
        parse_arguments(["--json", "--markdown"])


def test_fractional_timeout_is_kept() -> None:
    args = parse_arguments(["--timeout", "0.5", "-j", "2"])
    assert args.timeout == 0.5
    assert args.jobs == 2


@pytest.mark.parametrize(
    "argv",
    [
        ["--timeout", "0"],
        ["--timeout", "-1"],
        ["--timeout", "nan"],
        ["--timeout", "soon"],
        ["--jobs", "0"],
        ["-j", "-3"],
    ],
)
def test_non_positive_limits_are_rejected(argv, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        parse_arguments(argv)
    assert excinfo.value.code == 2
    assert "argument" in capsys.readouterr().err


@pytest.fixture
def project(monkeypatch):
    """Wire main() to fake cargo metadata and Github, and clear token variables."""
    state = {
        "metadata": metadata_for(
            [
                package("funded", "0.1.0", "https://github.com/bob/funded"),
                package("orphan", "0.2.0"),
            ],
            root="/work/app",
        ),
        "github": FakeGithub({"bob/funded": "github: bob\n"}),
        "commands": [],
        "tokens": [],
    }

    def fake_load_metadata(command):
        state["commands"].append(command)
        return state["metadata"]

    def fake_make_client(token, timeout, jobs):
        state["tokens"].append(token)
        return state["github"]

    monkeypatch.setattr(fund, "load_metadata", fake_load_metadata)
    monkeypatch.setattr(fund, "make_client", fake_make_client)
    monkeypatch.delenv("CARGO_FUND_GITHUB_API_TOKEN", raising=False)
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    return state


def test_main_prints_tree(project, monkeypatch, capsys) -> None:
    monkeypatch.setenv("CARGO_FUND_GITHUB_API_TOKEN", "from-env")
    assert main(["fund"]) == 0
    out, err = capsys.readouterr()
    assert out == (
        "/work/app (found funding links for 1 out of 2 dependencies)\n"
        "└─── https://github.com/sponsors/bob\n"
        "     └─ funded 0.1.0\n"
    )
    assert err == ""
    assert project["tokens"] == ["from-env"]


def test_flag_overrides_environment_token(project, monkeypatch, capsys) -> None:
    monkeypatch.setenv("CARGO_FUND_GITHUB_API_TOKEN", "from-env")
    monkeypatch.setenv("GITHUB_TOKEN", "fallback")
    assert main(["--github-api-token", "from-flag", "-q"]) == 0
    assert project["tokens"] == ["from-flag"]
    assert "-q" in project["commands"][0]


def test_github_token_is_a_fallback(project, monkeypatch, capsys) -> None:
    monkeypatch.setenv("GITHUB_TOKEN", "fallback")
    assert main([]) == 0
    assert project["tokens"] == ["fallback"]


def test_missing_token_is_fatal_before_any_work(project, capsys) -> None:
    assert main(["fund"]) == 1
    out, err = capsys.readouterr()
    assert out == ""
    assert err == (
        "Error: Github API token must be provided through the CARGO_FUND_GITHUB_API_TOKEN "
        "environment variable or the --github-api-token flag.\n"
    )
    assert project["commands"] == []
    assert project["github"].calls == []


def test_invalid_token_is_fatal(project, capsys) -> None:
    project["github"].files["bob/funded"] = BadCredentialsException(401, {"message": "Bad credentials"}, {})
    assert main(["--github-api-token", "nope"]) == 1
    out, err = capsys.readouterr()
    assert out == ""
    assert err.startswith("Error: Invalid Github API token.")


def test_metadata_failure_is_fatal(project, monkeypatch, capsys) -> None:
    def broken(command):
        raise MetadataError("cargo metadata returned exit status 101")

    monkeypatch.setattr(fund, "load_metadata", broken)
    assert main(["--github-api-token", "t"]) == 1
    assert capsys.readouterr().err == "Error: cargo metadata returned exit status 101\n"


def test_no_links_prints_note_unless_quiet(project, capsys) -> None:
    project["github"].files.clear()
    assert main(["--github-api-token", "t"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("/work/app (found funding links for 0 out of 2 dependencies)\n")
    assert "No funding links found" in out
    assert main(["--github-api-token", "t", "--quiet"]) == 0
    assert capsys.readouterr().out == "/work/app (found funding links for 0 out of 2 dependencies)\n"


def test_json_output(project, capsys) -> None:
    assert main(["--github-api-token", "t", "--json"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report == {
        "workspace_root": "/work/app",
        "summary": {"total": 2, "attributed": 1},
        "funding": [
            {
                "url": "https://github.com/sponsors/bob",
                "packages": [{"name": "funded", "version": "0.1.0"}],
            }
        ],
    }


def test_markdown_output(project, capsys) -> None:
    assert main(["--github-api-token", "t", "--markdown"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("# Funding Information\n")
    assert "* <https://github.com/sponsors/bob>\n  - Packages: funded 0.1.0" in out


def test_unattributable_crate_still_counts() -> None:
    deps = enumerate_dependencies(metadata_for([package("x", "1.0.0", "::::not a url")]))
    assert summarize(deps, aggregate([(dep.crate, ()) for dep in deps])) == RunSummary(1, 0)
