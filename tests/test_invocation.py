"""Tests for child command line reconstruction.

Tests cover:
- Option value quoting and shell round-trips
- Serialisation of flags, negatable flags, and multi-valued options
- ``ChildInvocationBuilder`` argument order, exclusions, and script validation
- ``RawInput.from_click_context`` keeping only explicitly given values
"""

from __future__ import annotations

import shlex
import sys
from typing import List, Optional

import pytest
import typer
from typer.testing import CliRunner

from ConsoleParallel.core.invocation import (
    ChildInvocationBuilder,
    OptionSpec,
    RawInput,
    quote_option_value,
    serialize_options,
)
from ConsoleParallel.errors import ScriptNotFoundError

# ============================================================================
# Quoting
# ============================================================================


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("foo", "foo"),
        ("foo-bar_1", "foo-bar_1"),
        ('"foo"', '"\\"foo\\""'),
        ("\"o_id in('20')\"", "\"\\\"o_id in('20')\\\"\""),
        ("a b c d", '"a b c d"'),
        ("A\nB'C", "\"A\nB'C\""),
        (True, "1"),
        (20, "20"),
        (5.3, "5.3"),
    ],
)
def test_quote_option_value(value, expected):
    assert quote_option_value(value) == expected


@pytest.mark.parametrize(
    "value",
    ["\"o_id in('20')\"", "a b c d", "back\\slash", "", "semi;colon", "it's"],
)
def test_quoted_values_split_back_to_the_original(value):
    assert shlex.split(quote_option_value(value)) == [value]


# ============================================================================
# Option serialisation
# ============================================================================


def _raw_input(options, definition: Optional[List[OptionSpec]] = None) -> RawInput:
    return RawInput(
        arguments={},
        options=dict(options),
        definition={spec.name: spec for spec in definition or []},
    )


def test_serialize_options_renders_each_kind():
    raw = _raw_input(
        {
            "opt": "val",
            "query": "a b",
            "verbose": True,
            "quiet": False,
            "cache": False,
            "resume": True,
            "tag": ["x", "y z"],
        },
        [
            OptionSpec("verbose", takes_value=False),
            OptionSpec("quiet", takes_value=False),
            OptionSpec("cache", takes_value=False, negatable=True),
            OptionSpec("resume", takes_value=False, negatable=True),
            OptionSpec("tag", multiple=True),
        ],
    )

    assert serialize_options(raw) == [
        "--opt=val",
        '--query="a b"',
        "--verbose",
        "--no-cache",
        "--resume",
        "--tag=x",
        '--tag="y z"',
    ]


def test_serialize_options_skips_excluded_options():
    raw = _raw_input({"processes": "2", "child": True, "main-process": True, "opt": "val"})

    assert serialize_options(raw) == ["--opt=val"]


def test_short_only_options_attach_their_value():
    raw = _raw_input({"o": "a b"}, [OptionSpec("o", flag="-o")])

    assert serialize_options(raw) == ['-o"a b"']


# ============================================================================
# ChildInvocationBuilder
# ============================================================================


@pytest.fixture
def script(tmp_path):
    path = tmp_path / "bin" / "console"
    path.parent.mkdir()
    path.write_text("# entry point\n", encoding="utf-8")
    return path


def test_builder_forwards_arguments_and_options(script):
    raw = RawInput(
        arguments={"command": "import:something", "item": "item3", "groupId": "group2"},
        options={"child": True, "processes": "2", "opt": "val", "label": "two words"},
    )
    builder = ChildInvocationBuilder("/usr/bin/python3", script, "import:something")

    argv = builder.build(raw)

    assert argv == [
        "/usr/bin/python3",
        str(script),
        "import:something",
        "group2",
        "--opt=val",
        "--label=two words",
        "--child",
    ]
    assert argv.count("--child") == 1


def test_builder_command_line_is_shell_safe(script):
    raw = RawInput(arguments={"groupId": "group 2"}, options={"label": "two words"})
    builder = ChildInvocationBuilder(sys.executable, script, "run")

    line = builder.command_line(raw)

    assert shlex.split(line) == builder.build(raw)
    assert '--label="two words"' in line


def test_builder_supports_module_invocation():
    builder = ChildInvocationBuilder("python", command_name="hash-files", module="ConsoleParallel")

    assert builder.build(RawInput()) == ["python", "-m", "ConsoleParallel", "hash-files", "--child"]


def test_builder_without_command_name(script):
    builder = ChildInvocationBuilder("python", script)

    assert builder.build(RawInput()) == ["python", str(script), "--child"]


def test_builder_expands_nested_command_path():
    builder = ChildInvocationBuilder("python", command_name="data import", module="app")

    assert builder.build(RawInput(options={"opt": "val"})) == [
        "python",
        "-m",
        "app",
        "data",
        "import",
        "--opt=val",
        "--child",
    ]


def test_missing_script_fails_at_construction(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    with pytest.raises(ScriptNotFoundError) as excinfo:
        ChildInvocationBuilder("python", "missing/console.py", "run")

    assert isinstance(excinfo.value, FileNotFoundError)
    assert "missing/console.py" in str(excinfo.value)
    assert str(tmp_path) in str(excinfo.value)


# ============================================================================
# RawInput from a click context
# ============================================================================


def test_raw_input_only_contains_explicit_values():
    captured = {}
    app = typer.Typer()

    @app.command()
    def run(
        ctx: typer.Context,
        group_id: str = typer.Argument(...),
        item: Optional[str] = typer.Argument(None),
        opt: str = typer.Option("default", "--opt"),
        other: str = typer.Option("default", "--other"),
        tag: List[str] = typer.Option([], "--tag"),
        resume: bool = typer.Option(False, "--resume/--no-resume"),
        child: bool = typer.Option(False, "--child"),
    ) -> None:
        captured["raw"] = RawInput.from_click_context(ctx)

    result = CliRunner().invoke(
        app, ["group2", "item3", "--opt", "val", "--tag", "a", "--tag", "b", "--no-resume", "--child"]
    )

    assert result.exit_code == 0, result.output
    raw = captured["raw"]
    assert raw.arguments == {"group_id": "group2", "item": "item3"}
    assert raw.options == {"opt": "val", "tag": ["a", "b"], "resume": False, "child": True}
    assert raw.definition["resume"].negatable
    assert raw.definition["tag"].multiple
    assert not raw.definition["child"].takes_value
    assert serialize_options(raw) == ["--opt=val", "--tag=a", "--tag=b", "--no-resume"]
