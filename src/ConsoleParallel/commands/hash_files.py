# === NAVMAP v1 ===
# {
#   "module": "ConsoleParallel.commands.hash_files",
#   "purpose": "Demo command hashing files into a JSONL manifest in parallel.",
#   "sections": [
#     {
#       "id": "filehasher",
#       "name": "FileHasher",
#       "anchor": "class-filehasher",
#       "kind": "class"
#     },
#     {
#       "id": "hash-files",
#       "name": "hash_files",
#       "anchor": "function-hash-files",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""``hash-files``: checksum every file below a directory in parallel.

Each item is a path relative to ``--input-dir``. Records are buffered per batch
and appended to the ``--output`` JSONL file once the batch is done, under a
file lock shared by all child processes.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Annotated, Any, Dict, List

import typer
from filelock import FileLock

from ConsoleParallel.cli import (
    BatchSizeOption,
    ChildOption,
    ItemArgument,
    MainProcessOption,
    ParallelCommand,
    ProcessesOption,
    SegmentSizeOption,
    run_parallel_command,
)
from ConsoleParallel.core.runner import BatchHooks
from ConsoleParallel.logging import get_logger, log_event

__all__ = ["FileHasher", "hash_files"]

LOGGER = get_logger(__name__, base_fields={"stage": "hash-files"})

_BLOCK_SIZE = 1 << 20


class FileHasher:
    """Hash files and append the results to a JSONL file batch by batch."""

    def __init__(
        self,
        input_dir: Path,
        output: Path,
        pattern: str = "*",
        algorithm: str = "sha256",
    ) -> None:
        self.input_dir = Path(input_dir)
        self.output = Path(output)
        self.pattern = pattern
        self.algorithm = algorithm
        self.lock_path = self.output.with_name(self.output.name + ".lock")
        self._buffer: List[Dict[str, Any]] = []

    def list_files(self) -> List[str]:
        """Return matching files as sorted POSIX paths relative to ``input_dir``."""

        output = self.output.resolve()
        files = []
        for path in self.input_dir.rglob(self.pattern):
            if not path.is_file():
                continue
            resolved = path.resolve()
            if resolved in (output, self.lock_path.resolve()):
                continue
            files.append(path.relative_to(self.input_dir).as_posix())
        return sorted(files)

    def prepare_output(self) -> None:
        self.output.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(str(self.lock_path)):
            self.output.write_text("", encoding="utf-8")

    def hash_item(self, item: str) -> None:
        path = self.input_dir / item
        digest = hashlib.new(self.algorithm)
        size = 0
        with path.open("rb") as handle:
            for block in iter(lambda: handle.read(_BLOCK_SIZE), b""):
                digest.update(block)
                size += len(block)
        self._buffer.append(
            {"path": item, "algorithm": self.algorithm, "digest": digest.hexdigest(), "size": size}
        )

    def start_batch(self, batch: List[str]) -> None:
        self._buffer.clear()

    def flush(self, batch: List[str]) -> None:
        """Append the buffered records of ``batch`` to the output file."""

        if not self._buffer:
            return
        with FileLock(str(self.lock_path)):
            with self.output.open("a", encoding="utf-8") as handle:
                for record in self._buffer:
                    handle.write(json.dumps(record, sort_keys=True) + "\n")
        log_event(LOGGER, "debug", "Flushed batch", records=len(self._buffer), batch_size=len(batch))
        self._buffer.clear()

    def report(self) -> None:
        with self.output.open("r", encoding="utf-8") as handle:
            records = sum(1 for line in handle if line.strip())
        log_event(LOGGER, "info", "Hash manifest written", output=str(self.output), records=records)


def hash_files(
    ctx: typer.Context,
    item: ItemArgument = None,
    input_dir: Annotated[
        Path,
        typer.Option(
            "--input-dir",
            help="Directory scanned for files.",
            exists=True,
            file_okay=False,
            dir_okay=True,
        ),
    ] = Path("."),
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="JSONL file receiving one record per file."),
    ] = Path("hashes.jsonl"),
    pattern: Annotated[
        str,
        typer.Option("--pattern", help="Glob applied recursively below --input-dir."),
    ] = "*",
    algorithm: Annotated[
        str,
        typer.Option("--algorithm", help="hashlib algorithm name."),
    ] = "sha256",
    processes: ProcessesOption = None,
    child: ChildOption = False,
    main_process: MainProcessOption = False,
    batch_size: BatchSizeOption = None,
    segment_size: SegmentSizeOption = None,
) -> None:
    """Hash every file below --input-dir and write the digests as JSON lines."""

    if algorithm not in hashlib.algorithms_available:
        raise typer.BadParameter(f"unsupported algorithm {algorithm!r}", param_hint="--algorithm")

    hasher = FileHasher(input_dir, output, pattern, algorithm)
    command = ParallelCommand(
        fetch_items=hasher.list_files,
        run_single=hasher.hash_item,
        hooks=BatchHooks(
            before_first=hasher.prepare_output,
            after_last=hasher.report,
            before_batch=hasher.start_batch,
            after_batch=hasher.flush,
        ),
        item_name="file",
        module="ConsoleParallel",
    )
    run_parallel_command(
        ctx,
        command,
        item=item,
        processes=processes,
        child=child,
        main_process=main_process,
        batch_size=batch_size,
        segment_size=segment_size,
    )
