"""Macro expansion into literal shell lines."""

from __future__ import annotations

import io
import re
from collections.abc import Mapping

import jinja2
from jinja2 import meta
from loguru import logger

from mqtt_shell.config import MacroSpec
from mqtt_shell.core.commands import ARGUMENT_COMMANDS, BuiltinCommand
from mqtt_shell.core.interpreter import LINK_OUT, interpret_line
from mqtt_shell.core.pipeline import build_pipeline
from mqtt_shell.core.writers import TextOutput
from mqtt_shell.errors import InterpretError, MacroConfigError, PipelineError

DOLLAR_ESCAPE = "\\$"
DOLLAR_SENTINEL = "\x00DOLLAR_ESCAPE\x00"
PLACEHOLDER_RE = re.compile(r"\$(\d+)")
ARG_NAME_RE = re.compile(r"^Arg\d+$")
SCRIPT_ERRORS = (InterpretError, PipelineError, jinja2.TemplateError, TypeError, ValueError)


class MacroManager:
    """Validates macro definitions and resolves macro invocations."""

    def __init__(self, specs: Mapping[str, MacroSpec], out: TextOutput) -> None:
        self.specs = dict(specs)
        self.out = out
        self._env = jinja2.Environment(autoescape=False)
        self._env.globals.update(exec=self._exec, log=self._log)
        self._templates: dict[str, jinja2.Template] = {}

    def validate(self) -> None:
        """Check every macro and compile the scripts.

        Raises:
            MacroConfigError: a name is reserved, the body is missing or ambiguous, or a script
                does not compile
        """

        self._templates = {}
        for name, spec in self.specs.items():
            if not self.is_macro(name) or not self.is_macro(f"{name} "):
                raise MacroConfigError(f"invalid macro name '{name}': reserved")
            if not spec.commands and not spec.script:
                raise MacroConfigError(f"invalid macro '{name}': there is no 'commands' nor 'script'")
            if spec.commands and spec.script:
                raise MacroConfigError(f"invalid macro '{name}': only 'commands' or 'script' must be used")
            if spec.script:
                self._templates[name] = self._compile(name, spec.script)

    def is_macro(self, line: str) -> bool:
        """Whether a line should go through macro resolution rather than straight to the processor."""

        for command in BuiltinCommand:
            if line == command:
                return False
            if command in ARGUMENT_COMMANDS and line.startswith(f"{command} "):
                return False
        return True

    def resolve(self, line: str) -> list[str]:
        """Expand one macro invocation. Unparsable lines are returned unchanged."""

        try:
            chain = interpret_line(line)
        except InterpretError:
            return [line]
        if not chain.commands:
            return [line]

        name = chain.commands[0].name
        arguments = chain.commands[0].arguments
        spec = self.specs.get(name)
        if spec is None:
            self.out.write("unknown macro\n")
            return []

        if len(arguments) < len(spec.arguments) or (not spec.varargs and len(arguments) != len(spec.arguments)):
            self.out.write("invalid macro arguments\n")
            self.out.write(f"usage: {name} {' '.join(spec.arguments)}\n")
            return []

        pipe = line.split(LINK_OUT, 1)[1] if LINK_OUT in line else ""
        if not spec.arguments:
            if spec.commands:
                return [_attach_pipe(command, pipe) for command in spec.commands]
            return self._render(name, {}, pipe)

        fixed = arguments[: len(spec.arguments) - 1]
        tail = arguments[len(spec.arguments) - 1 :]
        if spec.commands:
            return self._resolve_commands(spec, fixed, tail, pipe)
        return self._resolve_script(name, fixed, tail, pipe)

    def print_macros(self) -> None:
        for name in sorted(self.specs):
            self.out.write(f"{name} - {self.specs[name].description}\n")

    def _resolve_commands(self, spec: MacroSpec, fixed: list[str], tail: list[str], pipe: str) -> list[str]:
        lines: list[str] = []
        for value in tail:
            values = {index: arg for index, arg in enumerate(fixed, start=1)}
            values[len(fixed) + 1] = value
            for command in spec.commands:
                line = command.replace(DOLLAR_ESCAPE, DOLLAR_SENTINEL)
                line = PLACEHOLDER_RE.sub(lambda match: values.get(int(match.group(1)), match.group(0)), line)
                line = line.replace(DOLLAR_SENTINEL, "$")
                lines.append(_attach_pipe(line, pipe))
        return lines

    def _resolve_script(self, name: str, fixed: list[str], tail: list[str], pipe: str) -> list[str]:
        context = {f"Arg{index}": arg for index, arg in enumerate(fixed, start=1)}
        last_key = f"Arg{len(fixed) + 1}"
        lines: list[str] = []
        for value in tail:
            context[last_key] = value
            lines.extend(self._render(name, context, pipe))
        return lines

    def _render(self, name: str, context: dict[str, str], pipe: str) -> list[str]:
        template = self._templates.get(name)
        if template is None:
            template = self._templates[name] = self._compile(name, self.specs[name].script)
        try:
            rendered = template.render(context)
        except SCRIPT_ERRORS as exc:
            logger.debug("macro {} failed: {}", name, exc)
            self.out.write(f"Error while execute macro script: {exc}\n")
            return []
        return [_attach_pipe(line, pipe) for line in rendered.split("\n")]

    def _compile(self, name: str, script: str) -> jinja2.Template:
        try:
            parsed = self._env.parse(script)
        except jinja2.TemplateSyntaxError as exc:
            raise MacroConfigError(f"invalid macro '{name}': unable to parse script: {exc}") from exc
        unknown = sorted(
            variable
            for variable in meta.find_undeclared_variables(parsed)
            if variable not in self._env.globals and not ARG_NAME_RE.match(variable)
        )
        if unknown:
            raise MacroConfigError(f"invalid macro '{name}': unknown names in script: {', '.join(unknown)}")
        return self._env.from_string(script)

    def _exec(self, line: str) -> str:
        chain = interpret_line(line)
        if chain.is_appending:
            raise PipelineError("file redirection is not supported in exec")
        buffer = io.BytesIO()
        pipeline, cleanup = build_pipeline(chain, None, buffer, offset=0, merge_stderr=True)
        try:
            pipeline.run()
        finally:
            cleanup()
        return buffer.getvalue().decode("utf-8", errors="replace")

    def _log(self, format_string: str, *args: object) -> str:
        output = format_string % args if args else format_string
        if not output.endswith("\n"):
            output += "\n"
        self.out.write(output)
        return ""


def _attach_pipe(line: str, pipe: str) -> str:
    if pipe and line.startswith(f"{BuiltinCommand.SUB} "):
        return f"{line} {LINK_OUT}{pipe}"
    return line
