"""
Find, classify and transform files, one file at a time or in a thread pool.

Each file is processed independently: a failure is recorded as an Outcome
and the next file is processed. Only a failed restore from a backup stops
the run, as the original file may have been left damaged.
"""

import concurrent.futures
import logging
import pathlib
import typing

import attr

from .operations import Operation, RestoreError, create_backup, discard_backup, restore_backup
from .outcomes import Outcome, RunSummary, Status, report, summarize
from .paths import resolve
from .utils import rel

log = logging.getLogger(__name__)

Confirm = typing.Callable[[str], bool]


def classify(
        candidates: typing.Sequence[pathlib.Path],
        operation: Operation) -> typing.Tuple[pathlib.Path, ...]:
    classified = tuple(path for path in candidates if operation.classify(path))
    skipped = len(candidates) - len(classified)
    log.info(f"{len(classified)} of {len(candidates)} file(s) can be processed"
             + (f", {skipped} skipped" if skipped else ""))
    return classified


def rejected(
        candidates: typing.Sequence[pathlib.Path],
        classified: typing.Sequence[pathlib.Path],
        operation: Operation) -> typing.Tuple[Outcome, ...]:
    accepted = set(classified)
    return tuple(
        Outcome.skipped(path, operation.skip_reason)
        for path in candidates if path not in accepted)


def transform(path: pathlib.Path, operation: Operation) -> Outcome:
    try:
        return operation.transform(path)
    except Exception as error:
        log.exception(f"Unexpected error while processing {rel(path)}")
        return Outcome.failed(path, f"unexpected error: {error}")


def process(
        path: pathlib.Path,
        operation: Operation, *,
        dry_run: bool = False,
        backup: bool = False) -> Outcome:
    """Transform one file, rolling it back from a backup if that fails."""
    if dry_run:
        return Outcome.success(path, "would be processed")

    if not backup:
        return transform(path, operation)

    try:
        saved = create_backup(path)
    except OSError as error:
        return Outcome.failed(path, f"could not create backup: {error}")

    outcome = transform(path, operation)
    if outcome.status is Status.FAILED:
        restore_backup(path, saved)
        return attr.evolve(outcome, reason=f"{outcome.reason}; original restored from backup")

    discard_backup(saved)
    return outcome


def execute(
        files: typing.Sequence[pathlib.Path],
        operation: Operation, *,
        dry_run: bool = False,
        backup: bool = False,
        jobs: int = 1) -> typing.Tuple[Outcome, ...]:
    """
    Process every file, returning one outcome per file in the same order.

    A RestoreError stops the run; it carries the outcomes of the files that
    were processed before it.
    """
    if backup and not operation.in_place:
        log.warning(f"Backups are only made for operations that modify files in place, "
                    f"ignoring --backup for {operation.name}")
        backup = False

    def run(path: pathlib.Path) -> Outcome:
        return process(path, operation, dry_run=dry_run, backup=backup)

    outcomes: typing.List[Outcome] = []
    if jobs <= 1 or len(files) <= 1:
        for path in files:
            try:
                outcomes.append(run(path))
            except RestoreError as error:
                error.outcomes = tuple(outcomes)
                raise
        return tuple(outcomes)

    failure: typing.Optional[RestoreError] = None
    with concurrent.futures.ThreadPoolExecutor(max_workers=jobs) as pool:
        futures = [pool.submit(run, path) for path in files]
        for future in futures:
            if failure is not None and future.cancel():
                continue
            try:
                outcomes.append(future.result())
            except RestoreError as error:
                failure = failure or error
    if failure is not None:
        failure.outcomes = tuple(outcomes)
        raise failure
    return tuple(outcomes)


@attr.s(frozen=True)
class Pipeline:
    operation: Operation = attr.ib()
    root: pathlib.Path = attr.ib()
    default_globs: typing.Sequence[str] = attr.ib(default=())
    patterns: typing.Sequence[str] = attr.ib(default=())

    def candidates(self, targets: typing.Sequence[str]) -> typing.Tuple[pathlib.Path, ...]:
        return resolve(targets, self.default_globs, self.patterns, self.root)

    def run(self,
            targets: typing.Sequence[str] = (), *,
            dry_run: bool = False,
            backup: bool = False,
            jobs: int = 1,
            confirm: typing.Optional[Confirm] = None) -> RunSummary:
        self.operation.prepare()

        candidates = self.candidates(targets)
        if not candidates:
            log.info("No files to process")
            return RunSummary(dry_run=dry_run)
        log.info(f"Found {len(candidates)} candidate file(s)")
        for path in candidates:
            log.debug(f"Candidate: {rel(path)}")

        files = classify(candidates, self.operation)
        skipped = rejected(candidates, files, self.operation)
        if not files:
            log.info("No files to process")
            return self.finish(candidates, skipped, dry_run)

        if self.operation.mutating and not dry_run and confirm is not None:
            if not confirm(self.operation.describe(len(files))):
                log.info(f"{self.operation.name} aborted by user")
                return RunSummary(dry_run=dry_run, aborted=True)

        try:
            outcomes = execute(
                files, self.operation, dry_run=dry_run, backup=backup, jobs=jobs)
        except RestoreError as error:
            unrestored = Outcome.failed(
                error.path, f"could not be restored, backup kept at {error.backup}")
            self.finish(candidates, (*skipped, *error.outcomes, unrestored), dry_run)
            raise
        return self.finish(candidates, (*skipped, *outcomes), dry_run)

    @staticmethod
    def finish(
            candidates: typing.Sequence[pathlib.Path],
            outcomes: typing.Iterable[Outcome],
            dry_run: bool) -> RunSummary:
        """Report outcomes in the order their files were found."""
        order = {path: index for index, path in enumerate(candidates)}
        outcomes = sorted(outcomes, key=lambda outcome: order[outcome.path])
        summary = summarize(outcomes, dry_run=dry_run)
        report(outcomes, summary)
        return summary
