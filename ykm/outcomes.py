import enum
import logging
import pathlib
import typing

import attr

from .utils import rel

log = logging.getLogger(__name__)


class Status(enum.Enum):
    SUCCESS = 'success'
    SKIPPED = 'skipped'
    FAILED = 'failed'


LEVELS = {
    Status.SUCCESS: logging.INFO,
    Status.SKIPPED: logging.WARNING,
    Status.FAILED: logging.ERROR,
}


@attr.s(frozen=True)
class Outcome:
    path: pathlib.Path = attr.ib()
    status: Status = attr.ib()
    reason: str = attr.ib(default='')

    @classmethod
    def success(cls, path: pathlib.Path, reason: str = '') -> 'Outcome':
        return cls(path, Status.SUCCESS, reason)

    @classmethod
    def skipped(cls, path: pathlib.Path, reason: str) -> 'Outcome':
        return cls(path, Status.SKIPPED, reason)

    @classmethod
    def failed(cls, path: pathlib.Path, reason: str) -> 'Outcome':
        return cls(path, Status.FAILED, reason)

    def __str__(self):
        label = self.status.value.upper()
        if self.reason:
            return f"[{label}] {rel(self.path)}: {self.reason}"
        return f"[{label}] {rel(self.path)}"


@attr.s(frozen=True)
class RunSummary:
    succeeded: int = attr.ib(default=0)
    skipped: int = attr.ib(default=0)
    failed: int = attr.ib(default=0)
    dry_run: bool = attr.ib(default=False)
    aborted: bool = attr.ib(default=False)

    def __add__(self, other: 'RunSummary') -> 'RunSummary':
        return RunSummary(
            succeeded=self.succeeded + other.succeeded,
            skipped=self.skipped + other.skipped,
            failed=self.failed + other.failed,
            dry_run=self.dry_run or other.dry_run,
            aborted=self.aborted or other.aborted)

    @property
    def total(self) -> int:
        return self.succeeded + self.skipped + self.failed

    @property
    def exit_code(self) -> int:
        """The process exit status; the only place it is decided."""
        if self.dry_run or self.failed == 0:
            return 0
        return 1

    def __str__(self):
        prefix = "Dry run: " if self.dry_run else ""
        return (f"{prefix}{self.succeeded} succeeded, {self.skipped} skipped, "
                f"{self.failed} failed")


def summarize(outcomes: typing.Iterable[Outcome], dry_run: bool = False) -> RunSummary:
    counts = {status: 0 for status in Status}
    for outcome in outcomes:
        counts[outcome.status] += 1
    return RunSummary(
        succeeded=counts[Status.SUCCESS],
        skipped=counts[Status.SKIPPED],
        failed=counts[Status.FAILED],
        dry_run=dry_run)


def report(outcomes: typing.Iterable[Outcome], summary: RunSummary) -> None:
    """Log one line per file at a level matching its status, then the totals."""
    for outcome in outcomes:
        log.log(LEVELS[outcome.status], str(outcome))
    log.log(logging.ERROR if summary.exit_code else logging.INFO, str(summary))
