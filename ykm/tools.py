import json
import logging
import os
import pathlib
import shutil
import subprocess
import typing

import attr

from .utils import YkmException

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0


@attr.s(frozen=True)
class ToolResult:
    """The outcome of one external command. Failures are values, not exceptions."""

    command: typing.Tuple[str, ...] = attr.ib()
    exit_code: typing.Optional[int] = attr.ib()
    stdout: str = attr.ib(default='')
    stderr: str = attr.ib(default='')
    timed_out: bool = attr.ib(default=False)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def describe(self) -> str:
        name = pathlib.Path(self.command[0]).name
        if self.timed_out:
            return f"{name} timed out"
        if self.exit_code is None:
            return f"{name} could not be run: {self.stderr.strip()}"
        return f"{name} exited with status {self.exit_code}"


@attr.s(frozen=True)
class Tool:
    executable: str = attr.ib()
    timeout: typing.Optional[float] = attr.ib(default=DEFAULT_TIMEOUT)
    env: typing.Mapping[str, str] = attr.ib(factory=dict)

    def require(self) -> None:
        """Fail before any work starts if the executable can't be found."""
        if shutil.which(self.executable) is None:
            raise YkmException(f"Missing dependency: {self.executable} was not found")

    def command(self, arguments: typing.Sequence[str]) -> typing.Tuple[str, ...]:
        return (self.executable, *arguments)

    def environment(self) -> typing.Dict[str, str]:
        return {**os.environ, **self.env}

    def run(self,
            arguments: typing.Sequence[str],
            stdin: typing.Optional[str] = None) -> ToolResult:
        command = self.command(arguments)
        log.debug(f"Running {' '.join(command)}")
        try:
            process = subprocess.run(
                command,
                encoding='utf-8',
                errors='replace',
                input=stdin,
                stdin=None if stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self.environment(),
                timeout=self.timeout)
        except subprocess.TimeoutExpired:
            log.debug(f"{command[0]} did not finish within {self.timeout} seconds")
            return ToolResult(command=command, exit_code=None, timed_out=True)
        except OSError as error:
            log.debug(f"Could not run {command[0]}: {error}")
            return ToolResult(command=command, exit_code=None, stderr=str(error))

        result = ToolResult(
            command=command,
            exit_code=process.returncode,
            stdout=process.stdout,
            stderr=process.stderr)
        if not result.ok:
            for line in result.stderr.splitlines():
                log.debug(f"{command[0]}: {line}")
        return result


@attr.s(frozen=True)
class SOPS(Tool):
    executable: str = attr.ib(default='sops')

    def with_identity(self, identity: typing.Optional[pathlib.Path]) -> 'SOPS':
        """A copy that decrypts with a specific AGE identity file."""
        if identity is None:
            return self
        return attr.evolve(self, env={**self.env, 'SOPS_AGE_KEY_FILE': identity.as_posix()})

    def decrypt_check(self, path: pathlib.Path) -> ToolResult:
        """Decrypt a file and throw the plaintext away."""
        result = self.run(['--decrypt', path.as_posix()])
        return attr.evolve(result, stdout='')

    def update_keys(self, path: pathlib.Path) -> ToolResult:
        return self.run(['updatekeys', '--yes', path.as_posix()])

    def file_status(self, path: pathlib.Path) -> typing.Tuple[ToolResult, typing.Optional[bool]]:
        """Ask sops if a file is fully encrypted; the flag is None if it couldn't say."""
        result = self.run(['filestatus', path.as_posix()])
        if not result.ok:
            return result, None
        try:
            status = json.loads(result.stdout)
        except ValueError:
            log.debug(f"Unexpected filestatus output for {path}: {result.stdout!r}")
            return result, None
        if not isinstance(status, dict) or not isinstance(status.get('encrypted'), bool):
            return result, None
        return result, status['encrypted']


@attr.s(frozen=True)
class GPG(Tool):
    executable: str = attr.ib(default='gpg')
    home: typing.Optional[pathlib.Path] = attr.ib(default=None)

    def environment(self) -> typing.Dict[str, str]:
        env = super().environment()
        if self.home:
            env['GNUPGHOME'] = self.home.as_posix()
        return env

    def command(self, arguments: typing.Sequence[str]) -> typing.Tuple[str, ...]:
        return (self.executable, '--no-tty', '--with-colons', *arguments)

    def list_keys(self, secret: bool = True) -> ToolResult:
        return self.run(['--list-secret-keys' if secret else '--list-keys'])
