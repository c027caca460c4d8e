"""
Each Operation pairs a classification predicate with a per-file transform.
"""

import datetime
import logging
import os
import pathlib
import shutil
import typing

import attr

from .outcomes import Outcome
from .redact import redact_text
from .tools import SOPS
from .utils import YkmException, in_directory, rel

log = logging.getLogger(__name__)

#: Directory under the output for redacted files from outside the project.
EXTERNAL = '_external'


class RestoreError(YkmException):
    """A failed transform could not be rolled back; the original may be damaged."""

    def __init__(self, path: pathlib.Path, backup: pathlib.Path, error: Exception):
        super().__init__(
            f"Could not restore {path} from {backup} ({error}). The file may be "
            f"partially modified; the backup has been kept, restore it manually.")
        self.path = path
        self.backup = backup
        #: Outcomes of the files processed before the run was stopped.
        self.outcomes: typing.Tuple[Outcome, ...] = ()


def backup_path(path: pathlib.Path, now: typing.Optional[datetime.datetime] = None) -> pathlib.Path:
    now = now or datetime.datetime.now()
    return path.with_name(f"{path.name}.{now:%Y%m%d-%H%M%S}.bak")


def create_backup(path: pathlib.Path, now: typing.Optional[datetime.datetime] = None) -> pathlib.Path:
    """
    Copy a file to a new timestamped backup path.

    The name is reserved with O_EXCL, so two runs working on the same file
    at the same second get different backups.
    """
    base = backup_path(path, now)
    candidate, attempt = base, 0
    while True:
        try:
            fd = os.open(candidate, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        except FileExistsError:
            attempt += 1
            candidate = base.with_name(f"{base.name}.{attempt}")
            continue
        os.close(fd)
        break
    try:
        shutil.copy2(path, candidate)
    except OSError:
        candidate.unlink()
        raise
    log.debug(f"Backed up {path} to {candidate}")
    return candidate


def restore_backup(path: pathlib.Path, backup: pathlib.Path) -> None:
    try:
        shutil.copy2(backup, path)
    except OSError as error:
        log.critical(f"Failed to restore {path} from backup {backup}: {error}")
        raise RestoreError(path, backup, error) from error
    log.info(f"Restored {rel(path)} from backup")
    discard_backup(backup)


def discard_backup(backup: pathlib.Path) -> None:
    try:
        backup.unlink()
    except OSError as error:
        log.warning(f"Could not remove backup {backup}: {error}")


class Operation:
    name: str = 'operation'
    #: Operations that modify files ask for confirmation and support backups.
    mutating: bool = False
    #: Operations that rewrite the target file in place can be backed up.
    in_place: bool = False
    #: Reported for candidates that classify() rejects.
    skip_reason: str = "can't be processed"

    def prepare(self) -> None:
        """Check prerequisites before any file is touched."""

    def classify(self, path: pathlib.Path) -> bool:
        raise NotImplementedError

    def transform(self, path: pathlib.Path) -> Outcome:
        raise NotImplementedError

    def describe(self, count: int) -> str:
        return f"{self.name} {count} file(s)"


@attr.s(frozen=True)
class SopsOperation(Operation):
    sops: SOPS = attr.ib(factory=SOPS)

    skip_reason = "can't be decrypted with the current keys"

    def prepare(self) -> None:
        self.sops.require()

    def classify(self, path: pathlib.Path) -> bool:
        result = self.sops.decrypt_check(path)
        if not result.ok:
            log.info(f"Skipping {rel(path)}: can't be decrypted with the current keys "
                     f"({result.describe()})")
        return result.ok


@attr.s(frozen=True)
class Rekey(SopsOperation):
    """Re-encrypt secrets for the recipients currently in .sops.yaml."""

    name = 'rekey'
    mutating = True
    in_place = True

    def transform(self, path: pathlib.Path) -> Outcome:
        log.info(f"Updating keys for {rel(path)}")
        result = self.sops.update_keys(path)
        if result.ok:
            return Outcome.success(path, "keys updated")
        return Outcome.failed(path, result.describe())

    def describe(self, count: int) -> str:
        return f"Re-encrypt {count} file(s) in place with sops updatekeys"


@attr.s(frozen=True)
class Audit(SopsOperation):
    """Check decryptable secrets are also fully encrypted."""

    name = 'audit'

    def transform(self, path: pathlib.Path) -> Outcome:
        log.debug(f"Auditing {rel(path)}")
        result, encrypted = self.sops.file_status(path)
        if encrypted is None:
            return Outcome.failed(path, f"could not read encryption status ({result.describe()})")
        if not encrypted:
            return Outcome.failed(path, "contains unencrypted content")
        return Outcome.success(path, "decrypts and is encrypted")


@attr.s(frozen=True)
class Redact(Operation):
    """Write copies of files with the value of each 'key: value' line replaced."""

    output: pathlib.Path = attr.ib()
    root: pathlib.Path = attr.ib()

    name = 'redact'
    mutating = True
    skip_reason = "not a readable source file"

    def classify(self, path: pathlib.Path) -> bool:
        if not path.is_file() or not os.access(path, os.R_OK):
            log.info(f"Skipping {rel(path)}: not a readable file")
            return False
        if in_directory(path, self.output.resolve()):
            log.info(f"Skipping {rel(path)}: already in the output directory")
            return False
        return True

    def destination(self, path: pathlib.Path) -> pathlib.Path:
        """Keep the layout of files in the project, and the full path of anything outside it."""
        root = self.root.resolve()
        if in_directory(path, root):
            return self.output / path.relative_to(root)
        return self.output / EXTERNAL / path.relative_to(path.anchor)

    def transform(self, path: pathlib.Path) -> Outcome:
        destination = self.destination(path)
        log.debug(f"Redacting {rel(path)} to {rel(destination)}")
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            return Outcome.failed(path, f"could not create {destination.parent}: {error}")

        try:
            text = path.read_text(encoding='utf-8', errors='surrogateescape')
            destination.write_text(redact_text(text), encoding='utf-8', errors='surrogateescape')
        except (OSError, UnicodeError) as error:
            if destination.exists():
                destination.unlink()
            return Outcome.failed(path, f"could not redact: {error}")
        return Outcome.success(path, f"written to {rel(destination)}")

    def describe(self, count: int) -> str:
        message = f"Write redacted copies of {count} file(s) to {self.output}"
        if self.output.exists():
            message += " (the directory exists, files in it may be overwritten)"
        return message
