# === NAVMAP v1 ===
# {
#   "module": "ConsoleParallel.core.invocation",
#   "purpose": "Rebuild the command line used to start child processes.",
#   "sections": [
#     {
#       "id": "optionspec",
#       "name": "OptionSpec",
#       "anchor": "class-optionspec",
#       "kind": "class"
#     },
#     {
#       "id": "rawinput",
#       "name": "RawInput",
#       "anchor": "class-rawinput",
#       "kind": "class"
#     },
#     {
#       "id": "quote-option-value",
#       "name": "quote_option_value",
#       "anchor": "function-quote-option-value",
#       "kind": "function"
#     },
#     {
#       "id": "serialize-options",
#       "name": "serialize_options",
#       "anchor": "function-serialize-options",
#       "kind": "function"
#     },
#     {
#       "id": "childinvocationbuilder",
#       "name": "ChildInvocationBuilder",
#       "anchor": "class-childinvocationbuilder",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Child process command lines.

A child re-runs the very same command the user typed, minus the item argument
and the process-count option, plus a trailing ``--child`` marker. Only values
that were explicitly given on the parent's command line are forwarded, so
defaults are resolved again inside the child exactly as they were in the parent.

Option values are rendered the way a POSIX shell would need them: bare for
numbers and words made of word characters and dashes, double quoted otherwise. The
argument vector handed to :mod:`subprocess` is obtained by splitting those
tokens again with :func:`shlex.split`, which keeps the logged command line and
the executed one in agreement.
"""

from __future__ import annotations

import os
import re
import shlex
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from numbers import Real
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from ConsoleParallel.errors import ScriptNotFoundError

if TYPE_CHECKING:  # pragma: no cover - typing only
    import typer

__all__ = [
    "CHILD_OPTION",
    "DEFAULT_EXCLUDED_OPTIONS",
    "ChildInvocationBuilder",
    "OptionSpec",
    "RawInput",
    "quote_option_value",
    "serialize_options",
]

CHILD_OPTION = "child"
DEFAULT_EXCLUDED_OPTIONS = frozenset({"processes", CHILD_OPTION, "main-process"})
EXCLUDED_ARGUMENTS = frozenset({"item", "command"})
_IMPLICIT_SOURCES = frozenset({"DEFAULT", "DEFAULT_MAP"})

_BARE_VALUE = re.compile(r"[\w-]+", re.ASCII)


@dataclass(slots=True, frozen=True)
class OptionSpec:
    """Shape of one option of the host command.

    ``flag`` defaults to ``--<name>``; ``negated_flag`` is the switch used for
    a false value of a negatable boolean option (``--no-<name>`` by default).
    """

    name: str
    takes_value: bool = True
    multiple: bool = False
    negatable: bool = False
    flag: Optional[str] = None
    negated_flag: Optional[str] = None

    @property
    def switch(self) -> str:
        return self.flag or f"--{self.name}"

    @property
    def negated_switch(self) -> str:
        return self.negated_flag or f"--no-{self.name}"

    def with_value(self, value: str) -> str:
        switch = self.switch
        return f"{switch}={value}" if switch.startswith("--") else f"{switch}{value}"


@dataclass(slots=True)
class RawInput:
    """Arguments and options explicitly given on the command line.

    Values merged in from defaults are deliberately absent.
    """

    arguments: Dict[str, Any] = field(default_factory=dict)
    options: Dict[str, Any] = field(default_factory=dict)
    definition: Dict[str, OptionSpec] = field(default_factory=dict)

    @classmethod
    def from_click_context(cls, ctx: "typer.Context") -> "RawInput":
        """Collect the explicitly supplied parameters of ``ctx``.

        Parameters are classified by their click ``param_type_name`` rather than
        by class, since typer may ship its own copy of click.
        """

        arguments: Dict[str, Any] = {}
        options: Dict[str, Any] = {}
        definition: Dict[str, OptionSpec] = {}
        for param in ctx.command.params:
            if param.name is None:
                continue
            if getattr(param, "param_type_name", None) == "option":
                spec = _option_spec(param)
                definition[spec.name] = spec
                key = spec.name
                target = options
            else:
                key = param.name
                target = arguments
            source = ctx.get_parameter_source(param.name)
            if source is None or source.name in _IMPLICIT_SOURCES:
                continue
            value = ctx.params.get(param.name)
            if value is None:
                continue
            if isinstance(value, tuple):
                value = list(value)
            target[key] = value
        return cls(arguments=arguments, options=options, definition=definition)


def _option_spec(param: Any) -> OptionSpec:
    long_opts = [opt for opt in param.opts if opt.startswith("--")]
    flag = long_opts[0] if long_opts else param.opts[0]
    name = flag.lstrip("-")
    secondary = list(getattr(param, "secondary_opts", None) or [])
    negated = secondary[0] if secondary else None
    is_flag = bool(getattr(param, "is_flag", False))
    return OptionSpec(
        name=name,
        takes_value=not is_flag,
        multiple=bool(getattr(param, "multiple", False)),
        negatable=bool(is_flag and negated),
        flag=flag,
        negated_flag=negated,
    )


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def quote_option_value(value: Any) -> str:
    """Return ``value`` as a token a POSIX shell parses back to the original."""

    text = _stringify(value)
    if isinstance(value, (Real, Decimal)) or _BARE_VALUE.fullmatch(text):
        return text
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def serialize_options(
    raw_input: RawInput, excluded: Iterable[str] = DEFAULT_EXCLUDED_OPTIONS
) -> List[str]:
    """Render forwarded options as shell-quoted tokens.

    Multi-valued options produce one ``--name=value`` token per value.
    """

    skipped = set(excluded)
    tokens: List[str] = []
    for name, value in raw_input.options.items():
        if name in skipped:
            continue
        spec = raw_input.definition.get(name) or OptionSpec(name=name)
        if spec.negatable:
            tokens.append(spec.switch if value else spec.negated_switch)
        elif not spec.takes_value:
            if value:
                tokens.append(spec.switch)
        elif spec.multiple or isinstance(value, (list, tuple)):
            tokens.extend(spec.with_value(quote_option_value(entry)) for entry in value)
        elif value is not None:
            tokens.append(spec.with_value(quote_option_value(value)))
    return tokens


def _arguments(raw_input: RawInput) -> List[str]:
    values: List[str] = []
    for name, value in raw_input.arguments.items():
        if name in EXCLUDED_ARGUMENTS:
            continue
        if isinstance(value, (list, tuple)):
            values.extend(_stringify(entry) for entry in value)
        else:
            values.append(_stringify(value))
    return values


class ChildInvocationBuilder:
    """Build the argument vector re-invoking the current command as a child.

    Children are started either through an entry script (``script_path``) or a
    module run with ``-m`` (``module``). The script must exist when the builder
    is created.
    """

    def __init__(
        self,
        interpreter: str,
        script_path: Optional[os.PathLike[str] | str] = None,
        command_name: Optional[str] = None,
        *,
        module: Optional[str] = None,
        excluded_options: Iterable[str] = DEFAULT_EXCLUDED_OPTIONS,
    ) -> None:
        if module is None and script_path is None:
            raise ValueError("Either script_path or module is required")
        self.interpreter = str(interpreter)
        self.module = module
        self.script_path: Optional[str] = None
        if module is None:
            script = str(script_path)
            if not Path(script).is_file():
                raise ScriptNotFoundError(script, os.getcwd())
            self.script_path = script
        self.command_name = command_name or None
        self.excluded_options = frozenset(excluded_options) | {CHILD_OPTION}

    def _prefix(self) -> List[str]:
        prefix = [self.interpreter]
        if self.module is not None:
            prefix.extend(["-m", self.module])
        else:
            assert self.script_path is not None
            prefix.append(self.script_path)
        if self.command_name:
            # Nested commands arrive as "group command".
            prefix.extend(self.command_name.split())
        return prefix

    def build(self, raw_input: RawInput) -> List[str]:
        """Return the argument vector for a child process."""

        argv = self._prefix() + _arguments(raw_input)
        for token in serialize_options(raw_input, self.excluded_options):
            argv.extend(shlex.split(token))
        argv.append(f"--{CHILD_OPTION}")
        return argv

    def command_line(self, raw_input: RawInput) -> str:
        """Render the child invocation as a single shell-safe string."""

        parts: List[str] = [shlex.quote(part) for part in self._prefix()]
        parts.extend(shlex.quote(value) for value in _arguments(raw_input))
        parts.extend(serialize_options(raw_input, self.excluded_options))
        parts.append(f"--{CHILD_OPTION}")
        return " ".join(parts)
