"""Command-execution gate.

Every external program the assistant runs passes through ``CommandGate``.
A request is checked in a fixed order and rejected before any process
exists:

1. program lookup in the ``CommandPolicy``
2. forbidden shell metacharacters in any argument
3. subcommand allowlist (and nested subcommand allowlist)
4. flag blocklist
5. Path Gate check of file arguments for file-consuming programs

Accepted requests spawn the rule's absolute executable with an argument
vector via ``asyncio.create_subprocess_exec``. No shell is ever involved,
so arguments are never re-parsed.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, NoReturn, Sequence

from warden.security.errors import AccessDenied, FailureReason, PolicyViolation
from warden.security.paths import PathGate, normalize_path

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("warden.audit")

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024
_READ_CHUNK = 64 * 1024

FORBIDDEN_CHARACTERS: frozenset[str] = frozenset(";&|`$<>()\\\n\r")

_NUMERIC_RE = re.compile(r"^[+-]?\d+$")


def has_forbidden_characters(arg: str) -> bool:
    """True when *arg* contains a shell metacharacter."""
    return any(ch in FORBIDDEN_CHARACTERS for ch in arg)


@dataclass(frozen=True)
class CommandRule:
    """Policy for one allowlisted program.

    Attributes:
        path: Absolute path of the executable that is actually spawned.
        subcommands: If set, the first argument must be one of these.
        nested_subcommands: Per-subcommand allowlist for the second
            argument (e.g. ``aws s3`` -> ``{"ls"}``).
        blocked_flags: Flags rejected anywhere in the argument list.
        file_consuming: Positional arguments are file paths and go
            through the Path Gate.
        pattern_args: Number of leading positional arguments that are
            not paths (grep's search pattern).
        value_flags: Flags whose following numeric argument is their
            value rather than a path (``head -n 20``).
    """

    path: str
    subcommands: frozenset[str] | None = None
    nested_subcommands: Mapping[str, frozenset[str]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    blocked_flags: frozenset[str] = frozenset()
    file_consuming: bool = False
    pattern_args: int = 0
    value_flags: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if not os.path.isabs(self.path):
            raise ValueError(f"Executable path must be absolute: {self.path!r}")
        if not isinstance(self.nested_subcommands, MappingProxyType):
            object.__setattr__(
                self,
                "nested_subcommands",
                MappingProxyType(
                    {k: frozenset(v) for k, v in self.nested_subcommands.items()}
                ),
            )


class CommandPolicy(Mapping[str, CommandRule]):
    """Immutable ``program name -> CommandRule`` table.

    A program absent from the table is never executable.
    """

    def __init__(self, rules: Mapping[str, CommandRule]):
        self._rules = MappingProxyType(dict(rules))

    def __getitem__(self, program: str) -> CommandRule:
        return self._rules[program]

    def __iter__(self):
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"CommandPolicy({sorted(self._rules)})"


_JOURNALCTL_BLOCKED = frozenset({
    "--flush",
    "--rotate",
    "--vacuum-size",
    "--vacuum-time",
    "--vacuum-files",
    "--sync",
    "--relinquish-var",
    "--smart-relinquish-var",
})

DEFAULT_POLICY = CommandPolicy({
    "docker": CommandRule(
        path="/usr/bin/docker",
        subcommands=frozenset({"ps", "inspect", "logs", "network", "images", "version", "info"}),
    ),
    "free": CommandRule(path="/usr/bin/free"),
    "df": CommandRule(path="/usr/bin/df"),
    "top": CommandRule(path="/usr/bin/top"),
    "uptime": CommandRule(path="/usr/bin/uptime"),
    "stat": CommandRule(path="/usr/bin/stat"),
    "ps": CommandRule(path="/usr/bin/ps"),
    "openssl": CommandRule(path="/usr/bin/openssl"),
    "pm2": CommandRule(
        path="/usr/local/bin/pm2",
        subcommands=frozenset({"list", "jlist", "status", "describe", "show"}),
    ),
    "aws": CommandRule(
        path="/usr/local/bin/aws",
        subcommands=frozenset({"s3"}),
        nested_subcommands={"s3": frozenset({"ls"})},
    ),
    "fail2ban-client": CommandRule(
        path="/usr/bin/fail2ban-client",
        subcommands=frozenset({"status", "banned"}),
    ),
    "systemctl": CommandRule(
        path="/usr/bin/systemctl",
        subcommands=frozenset({
            "status", "show", "list-units", "list-unit-files",
            "is-active", "is-enabled", "cat",
        }),
    ),
    "journalctl": CommandRule(path="/usr/bin/journalctl", blocked_flags=_JOURNALCTL_BLOCKED),
    "cat": CommandRule(path="/usr/bin/cat", file_consuming=True),
    "ls": CommandRule(path="/usr/bin/ls", file_consuming=True),
    "head": CommandRule(
        path="/usr/bin/head",
        file_consuming=True,
        value_flags=frozenset({"-n", "-c", "--lines", "--bytes"}),
    ),
    "tail": CommandRule(
        path="/usr/bin/tail",
        file_consuming=True,
        blocked_flags=frozenset({"-f", "-F", "--follow"}),
        value_flags=frozenset({"-n", "-c", "--lines", "--bytes"}),
    ),
    "grep": CommandRule(
        path="/usr/bin/grep",
        file_consuming=True,
        pattern_args=1,
        blocked_flags=frozenset({
            "-r", "-R", "--recursive", "--dereference-recursive",
            "-f", "--file", "-e", "--regexp",
        }),
        value_flags=frozenset({
            "-m", "-A", "-B", "-C",
            "--max-count", "--after-context", "--before-context", "--context",
        }),
    ),
})


@dataclass(frozen=True)
class CommandResult:
    """Captured output of an executed command.

    A non-zero ``exit_code`` is an ordinary outcome, not an error.
    """

    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool = False
    truncated: bool = False
    execution_time_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


def _flag_blocked(token: str, blocked: frozenset[str]) -> str | None:
    """Return the blocked flag *token* spells, if any.

    Matches the exact token, ``--flag=value``, abbreviated long flags
    (getopt accepts any unique prefix, so ``--rot`` is ``--rotate``) and
    short-flag clusters such as ``-rn``.
    """
    if token in blocked:
        return token
    if token.startswith("--"):
        name = token.split("=", 1)[0]
        if name in blocked:
            return name
        if len(name) > 2:
            for flag in sorted(blocked):
                if flag.startswith(name):
                    return flag
        return None
    if len(token) > 2 and token.startswith("-"):
        for ch in token[1:]:
            if f"-{ch}" in blocked:
                return f"-{ch}"
    return None


class CommandGate:
    """Validates and executes allowlisted programs.

    Args:
        policy: Program table; defaults to ``DEFAULT_POLICY``.
        path_gate: Gate used for file-consuming programs. Without one,
            file-consuming programs deny every path argument.
        timeout: Default wall-clock limit in seconds.
        max_output_bytes: Per-stream capture limit; excess is dropped.
    """

    def __init__(
        self,
        policy: CommandPolicy | None = None,
        path_gate: PathGate | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    ) -> None:
        self._policy = policy if policy is not None else DEFAULT_POLICY
        self._path_gate = path_gate or PathGate()
        self._timeout = timeout
        self._max_output_bytes = max_output_bytes

    @property
    def policy(self) -> CommandPolicy:
        return self._policy

    def is_command_allowed(self, program: str) -> bool:
        return program in self._policy

    def allowed_commands(self) -> list[str]:
        return sorted(self._policy)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def check(self, program: str, args: Sequence[str] = ()) -> list[str]:
        """Run every policy check without spawning anything.

        Args:
            program: Program name as listed in the policy.
            args: Argument vector (excluding the program).

        Returns:
            The argument vector to execute. Path arguments of
            file-consuming programs are replaced by their real paths.

        Raises:
            PolicyViolation: The request breaks the command policy.
            AccessDenied: A file argument is refused by the Path Gate.
        """
        args = list(args)
        rule = self._policy.get(program)
        if rule is None:
            self._deny(f"Command not in allowlist: {program}", FailureReason.NOT_ALLOWLISTED)

        for arg in args:
            if has_forbidden_characters(arg):
                self._deny(
                    f"Argument contains forbidden characters: {arg!r}",
                    FailureReason.FORBIDDEN_CHARACTERS,
                )

        if rule.subcommands is not None:
            self._check_subcommands(program, rule, args)

        if rule.blocked_flags:
            end_of_options = False
            for arg in args:
                if arg == "--":
                    end_of_options = True
                if end_of_options or not arg.startswith("-"):
                    continue
                flag = _flag_blocked(arg, rule.blocked_flags)
                if flag is not None:
                    self._deny(
                        f"Flag not allowed for {program}: {flag}",
                        FailureReason.FLAG_NOT_ALLOWED,
                    )

        if rule.file_consuming:
            args = self._check_file_args(program, rule, args)

        return args

    def _check_subcommands(self, program: str, rule: CommandRule, args: list[str]) -> None:
        if not args:
            self._deny(f"{program} requires a subcommand", FailureReason.MISSING_SUBCOMMAND)
        sub = args[0]
        if sub not in rule.subcommands:
            self._deny(
                f"{program} subcommand not allowed: {sub}",
                FailureReason.SUBCOMMAND_NOT_ALLOWED,
            )
        nested = rule.nested_subcommands.get(sub)
        if nested is None:
            return
        if len(args) < 2:
            self._deny(
                f"{program} {sub} requires a subcommand",
                FailureReason.MISSING_SUBCOMMAND,
            )
        if args[1] not in nested:
            self._deny(
                f"{program} {sub} subcommand not allowed: {args[1]}",
                FailureReason.SUBCOMMAND_NOT_ALLOWED,
            )

    def _check_file_args(self, program: str, rule: CommandRule, args: list[str]) -> list[str]:
        checked: list[str] = []
        skip_patterns = rule.pattern_args
        end_of_options = False
        takes_value = False
        paths = 0
        for arg in args:
            if arg == "--" and not end_of_options:
                end_of_options = True
                takes_value = False
                checked.append(arg)
                continue
            if not end_of_options and arg.startswith("-"):
                takes_value = arg in rule.value_flags
                checked.append(arg)
                continue
            if takes_value:
                takes_value = False
                if _NUMERIC_RE.match(arg):
                    checked.append(arg)
                    continue
            if skip_patterns > 0:
                # The first positionals are patterns, numeric or not.
                skip_patterns -= 1
                checked.append(arg)
                continue
            if _NUMERIC_RE.match(arg):
                checked.append(arg)
                continue
            if not os.path.isabs(os.path.expanduser(arg)):
                audit_logger.warning(f"Relative path rejected for {program}: {arg!r}")
                raise AccessDenied(
                    f"Relative path not allowed for {program}: {arg}",
                    FailureReason.RELATIVE_PATH,
                    arg,
                )
            checked.append(self._path_gate.require(normalize_path(arg)))
            paths += 1
        if paths == 0:
            # Without a path argument these programs read the working directory.
            self._deny(f"{program} requires a file path", FailureReason.MISSING_PATH)
        return checked

    def _deny(self, message: str, reason: FailureReason) -> NoReturn:
        audit_logger.warning(f"Command denied ({reason.value}): {message}")
        raise PolicyViolation(message, reason)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        program: str,
        args: Sequence[str] = (),
        timeout: float | None = None,
    ) -> CommandResult:
        """Validate and run *program* with *args*.

        Raises:
            PolicyViolation: Before anything is spawned.
            AccessDenied: A file argument is refused.

        Returns:
            CommandResult. Spawn errors and timeouts are reported through
            ``exit_code``/``stderr``/``timed_out``.
        """
        argv = self.check(program, args)
        rule = self._policy[program]
        limit = timeout if timeout is not None else self._timeout

        logger.debug(f"Executing {rule.path} {argv}")
        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                rule.path,
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            logger.error(f"Executable not found: {rule.path}")
            return CommandResult(
                stdout="",
                stderr=f"Executable not found: {rule.path}",
                exit_code=127,
            )
        except OSError as exc:
            logger.error(f"Failed to spawn {rule.path}: {exc}")
            return CommandResult(stdout="", stderr=str(exc), exit_code=1)

        try:
            (stdout, out_trunc), (stderr, err_trunc) = await asyncio.wait_for(
                asyncio.gather(
                    self._read_capped(proc.stdout),
                    self._read_capped(proc.stderr),
                ),
                timeout=limit,
            )
            exit_code = await proc.wait()
        except asyncio.TimeoutError:
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
            await proc.wait()
            logger.warning(f"Command timed out after {limit}s: {program}")
            return CommandResult(
                stdout="",
                stderr=f"Command timed out after {limit}s",
                exit_code=-1,
                timed_out=True,
                execution_time_ms=round((time.monotonic() - start) * 1000.0, 2),
            )

        if out_trunc or err_trunc:
            logger.info(f"Output of {program} truncated to {self._max_output_bytes} bytes")
        return CommandResult(
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            exit_code=exit_code,
            truncated=out_trunc or err_trunc,
            execution_time_ms=round((time.monotonic() - start) * 1000.0, 2),
        )

    async def _read_capped(self, stream: asyncio.StreamReader | None) -> tuple[bytes, bool]:
        """Drain *stream*, keeping at most ``max_output_bytes``."""
        if stream is None:
            return b"", False
        buf = bytearray()
        truncated = False
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            room = self._max_output_bytes - len(buf)
            if room > 0:
                buf.extend(chunk[:room])
            if len(chunk) > room:
                truncated = True
        return bytes(buf), truncated


def is_command_allowed(program: str, policy: CommandPolicy = DEFAULT_POLICY) -> bool:
    """True when *program* is in the default (or given) policy."""
    return program in policy


def allowed_commands(policy: CommandPolicy = DEFAULT_POLICY) -> list[str]:
    return sorted(policy)
