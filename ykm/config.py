"""
Environment variables read by ykm, their defaults, and the checks run by validate-config.

Every option is resolved as: explicit flag > environment variable > default here.
"""

import enum
import logging
import os
import pathlib
import typing

import attr
import click

log = logging.getLogger(__name__)

DEFAULT_EXPIRY_DAYS = 30
DEFAULT_REDACT_OUTPUT_DIR = 'redacted_output'
DEFAULT_VERIFY_FILE = 'secrets/example.yaml'
DEFAULT_RECIPIENTS_FILE = 'age-recipients.txt'
DEFAULT_SOPS_FILE = '.sops.yaml'
DEFAULT_PATH_REGEX = r'secrets/.*\.yaml'

DEFAULT_REKEY_GLOBS = 'secrets/**/*.yaml,secrets/**/*.json'
DEFAULT_AUDIT_GLOBS = 'secrets/**/*.yaml,secrets/**/*.json,*.env.tracked'
DEFAULT_REDACT_GLOBS = 'secrets/**/*.yaml,secrets/**/*.json,*.env.tracked'

#: Name patterns used when searching directories given on the command line.
SOPS_PATTERNS = ('*.yaml', '*.yml', '*.json', '*.env', '*.ini', '*.txt', '*.sops.*')
REDACT_PATTERNS = (
    '*.yaml', '*.yml', '*.json', '*.toml', '*.ini', '*.conf', '*.properties', '*.env*', '*rc')


def split_globs(value: typing.Union[str, typing.Sequence[str], None]) -> typing.Tuple[str, ...]:
    """Split a comma separated list of glob patterns, trimming whitespace."""
    if not value:
        return ()
    if isinstance(value, str):
        value = value.split(',')
    return tuple(pattern.strip() for pattern in value if pattern.strip())


class GlobList(click.ParamType):
    name = 'globs'

    def convert(self, value, param, ctx):
        if isinstance(value, tuple):
            return value
        return split_globs(value)


class Level(enum.Enum):
    WARNING = 'warning'
    CRITICAL = 'critical'


@attr.s(frozen=True)
class Finding:
    level: Level = attr.ib()
    subject: str = attr.ib()
    message: str = attr.ib()
    present: bool = attr.ib()


@attr.s(frozen=True)
class FileCheck:
    path: str = attr.ib()
    level: Level = attr.ib()
    message: str = attr.ib()

    def check(self, root: pathlib.Path, environ: typing.Mapping[str, str]) -> Finding:
        return Finding(self.level, self.path, self.message, (root / self.path).is_file())


@attr.s(frozen=True)
class EnvCheck:
    name: str = attr.ib()
    level: Level = attr.ib()
    message: str = attr.ib()

    def check(self, root: pathlib.Path, environ: typing.Mapping[str, str]) -> Finding:
        return Finding(self.level, self.name, self.message, bool(environ.get(self.name)))


CHECKS = (
    FileCheck('.env.tracked', Level.WARNING,
              "Defaults from mise.toml will be used."),
    FileCheck('.sops.yaml', Level.CRITICAL,
              "SOPS operations will likely fail."),
    FileCheck('secrets/.env.sops.yaml', Level.WARNING,
              "No SOPS-managed environment variables will be loaded."),
    EnvCheck('GPG_USER_NAME', Level.CRITICAL,
             "Required for GPG key generation."),
    EnvCheck('GPG_USER_EMAIL', Level.CRITICAL,
             "Required for GPG key generation."),
    EnvCheck('PRIMARY_YUBIKEY_SERIAL', Level.WARNING,
             "Required for most primary YubiKey operations."),
    EnvCheck('AGE_PRIMARY_YUBIKEY_IDENTITY_FILE', Level.WARNING,
             "Often used as the default for SOPS_AGE_KEY_FILE."),
)


def validate(
        root: pathlib.Path,
        environ: typing.Optional[typing.Mapping[str, str]] = None,
        checks: typing.Sequence[typing.Union[FileCheck, EnvCheck]] = CHECKS,
) -> typing.Tuple[Finding, ...]:
    """Run each check against the project root and environment."""
    environ = os.environ if environ is None else environ
    log.info(f"Validating configuration in {root}")
    return tuple(check.check(root, environ) for check in checks)
