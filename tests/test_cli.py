"""CLI tests for the ``hash-files`` command run in-process."""

from __future__ import annotations

import hashlib
import json

import pytest
import typer
from typer.testing import CliRunner

from ConsoleParallel.__main__ import app
from ConsoleParallel.cli import _command_name
from ConsoleParallel.commands.hash_files import FileHasher

runner = CliRunner()


@pytest.fixture
def tree(tmp_path):
    source = tmp_path / "source"
    (source / "sub").mkdir(parents=True)
    (source / "a.txt").write_bytes(b"alpha")
    (source / "sub" / "b.txt").write_bytes(b"bravo")
    (source / "c.log").write_bytes(b"charlie")
    return source


def _records(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


@pytest.mark.parametrize("extra", [[], ["--main-process"], ["--processes", "4", "--main-process"]])
def test_hash_files_in_current_process(tree, tmp_path, extra):
    output = tmp_path / "out" / "hashes.jsonl"

    result = runner.invoke(
        app,
        ["hash-files", "--input-dir", str(tree), "--output", str(output), "--pattern", "*.txt", *extra],
    )

    assert result.exit_code == 0, result.output
    records = sorted(_records(output), key=lambda record: record["path"])
    assert [record["path"] for record in records] == ["a.txt", "sub/b.txt"]
    assert records[0]["digest"] == _sha256(b"alpha")
    assert records[1]["size"] == len(b"bravo")
    assert "in the current process." in result.output
    assert "Processed 2 files." in result.output


def test_hash_files_single_item(tree, tmp_path):
    output = tmp_path / "hashes.jsonl"

    result = runner.invoke(
        app, ["hash-files", "c.log", "--input-dir", str(tree), "--output", str(output), "--algorithm", "md5"]
    )

    assert result.exit_code == 0, result.output
    assert _records(output) == [
        {"algorithm": "md5", "digest": hashlib.md5(b"charlie").hexdigest(), "path": "c.log", "size": 7}
    ]


def test_failed_item_contributes_to_exit_code(tree, tmp_path):
    output = tmp_path / "hashes.jsonl"

    result = runner.invoke(
        app, ["hash-files", "missing.txt", "--input-dir", str(tree), "--output", str(output)]
    )

    # FileNotFoundError carries errno ENOENT (2).
    assert result.exit_code == 2
    assert 'Failed to process the item "missing.txt"' in result.output
    assert _records(output) == []


@pytest.mark.parametrize(
    ("arguments", "message"),
    [
        (["--processes", "0"], "[config] --processes:"),
        (["--processes", "two"], 'Got "two"'),
        (["--batch-size", "10", "--segment-size", "5"], "[config] --segment-size:"),
    ],
)
def test_invalid_parallel_options_exit_with_usage_code(tree, tmp_path, arguments, message):
    result = runner.invoke(
        app,
        ["hash-files", "--input-dir", str(tree), "--output", str(tmp_path / "h.jsonl"), *arguments],
    )

    assert result.exit_code == 2
    assert message in result.output


def test_unknown_algorithm_is_rejected(tree, tmp_path):
    result = runner.invoke(
        app,
        ["hash-files", "--input-dir", str(tree), "--output", str(tmp_path / "h.jsonl"), "--algorithm", "nope"],
    )

    assert result.exit_code == 2


def test_file_listing_skips_output_and_lock(tree):
    hasher = FileHasher(tree, tree / "hashes.jsonl")
    hasher.prepare_output()

    assert hasher.list_files() == ["a.txt", "c.log", "sub/b.txt"]


def test_command_name_includes_parent_groups():
    seen = []
    root = typer.Typer()
    group = typer.Typer()
    root.add_typer(group, name="data")

    @group.command("import")
    def import_items(ctx: typer.Context) -> None:
        seen.append(_command_name(ctx))

    @group.command("export")
    def export_items(ctx: typer.Context) -> None:
        seen.append(_command_name(ctx))

    result = runner.invoke(root, ["data", "import"])

    assert result.exit_code == 0, result.output
    assert seen == ["data import"]
