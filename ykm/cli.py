import logging
import pathlib
import typing

import attr
import click

from . import __doc__, __version__
from . import config, keys, recipients
from .config import GlobList
from .operations import Audit, Redact, Rekey
from .outcomes import RunSummary
from .pipeline import Pipeline
from .tools import DEFAULT_TIMEOUT, GPG, SOPS
from .utils import YkmException, expand, find_project_root, rel

log = logging.getLogger(__name__)

LOG_FORMAT = '[%(levelname)s] %(message)s'
LOG_FILE_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


class PathType(click.Path):
    def convert(self, value, param, ctx):
        return pathlib.Path(super().convert(value, param, ctx))


@attr.s(frozen=True)
class Workspace:
    root: pathlib.Path = attr.ib()
    sops: SOPS = attr.ib()
    gpg: GPG = attr.ib()

    def path(self, value: typing.Union[str, pathlib.Path]) -> pathlib.Path:
        """Expand a path, taking relative paths from the project root."""
        path = expand(value)
        return path if path.is_absolute() else self.root / path


def configure_logging(level: str, log_file: typing.Optional[pathlib.Path]) -> None:
    handlers: typing.List[logging.Handler] = [logging.StreamHandler()]
    handlers[0].setFormatter(logging.Formatter(LOG_FORMAT))
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(logging.Formatter(LOG_FILE_FORMAT))
        handlers.append(file_handler)
    logging.basicConfig(level=level.upper(), handlers=handlers, force=True)


def confirmation(message: str) -> bool:
    try:
        return click.confirm(f"{message}. Continue?", default=False)
    except click.Abort:
        return False


def finish(ctx: click.Context, summary: RunSummary) -> None:
    if summary.aborted:
        click.secho("Aborted, no files were changed", fg='yellow')
    elif summary.exit_code:
        click.secho(f"Finished with failures: {summary}", fg='red')
    else:
        click.secho(f"Finished: {summary}", fg='green')
    ctx.exit(summary.exit_code)


dry_run_option = click.option(
    '--dry-run',
    default=False,
    is_flag=True,
    help="Report the files that would be processed without changing anything.")

yes_option = click.option(
    '-y', '--yes',
    default=False,
    is_flag=True,
    help="Don't ask for confirmation before changing files.")

jobs_option = click.option(
    '-j', '--jobs',
    type=click.IntRange(min=1),
    envvar='YKM_JOBS',
    default=1,
    show_default=True,
    help="Number of files to process at once.")

identity_option = click.option(
    '-i', '--identity',
    type=PathType(dir_okay=False),
    default=None,
    help="AGE identity file to decrypt with, passed to sops as $SOPS_AGE_KEY_FILE.")

targets_argument = click.argument(
    'targets',
    metavar='[FILE_OR_DIR]...',
    required=False,
    nargs=-1)


def globs_option(envvar: str, default: str):
    return click.option(
        '--globs',
        type=GlobList(),
        envvar=envvar,
        default=default,
        show_default=True,
        help=f"Comma separated globs used when no paths are given (${envvar}).")


@click.group(help=__doc__)
@click.option(
    '-p', '--path',
    type=PathType(
        file_okay=False,
        dir_okay=True,
        exists=True),
    envvar='YKM_PROJECT_ROOT',
    default=find_project_root,
    help="Project root. Defaults to the current git repository.")
@click.option(
    '-d', '--debug', 'debug',
    default=False,
    is_flag=True,
    help="Enable debug logging.")
@click.option(
    '--log-level',
    type=click.Choice(['debug', 'info', 'warning', 'error'], case_sensitive=False),
    envvar='LOG_LEVEL',
    default='info',
    show_default=True)
@click.option(
    '--log-file',
    type=PathType(dir_okay=False),
    envvar='YKM_LOG_FILE',
    default=None,
    help="Also write timestamped logs to this file.")
@click.option(
    '--timeout',
    type=click.FloatRange(min=0, min_open=True),
    envvar='YKM_TOOL_TIMEOUT',
    default=DEFAULT_TIMEOUT,
    show_default=True,
    help="Seconds to wait for each sops or gpg command.")
@click.option(
    '--sops-bin',
    envvar='YKM_SOPS_BIN',
    default='sops',
    show_default=True)
@click.option(
    '--gpg-bin',
    envvar='YKM_GPG_BIN',
    default='gpg',
    show_default=True)
@click.pass_context
def main(
        ctx,
        path: pathlib.Path,
        debug: bool,
        log_level: str,
        log_file: typing.Optional[pathlib.Path],
        timeout: float,
        sops_bin: str,
        gpg_bin: str):
    configure_logging('debug' if debug else log_level, log_file)
    root = path.resolve()
    log.debug(f"Using project root {root}")
    ctx.obj = Workspace(
        root=root,
        sops=SOPS(executable=sops_bin, timeout=timeout),
        gpg=GPG(executable=gpg_bin, timeout=timeout))


@main.command()
def version():
    """Show the application version."""
    click.echo(f"ykm {__version__}")


def parse_days(ctx, param, value) -> int:
    value = str(value).strip()
    if not value.isdigit():
        raise YkmException(
            f"Invalid value for --days: {value!r}. Must be a non-negative integer.")
    return int(value)


@main.command(name='expiring-keys')
@click.option(
    '--days',
    envvar='GPG_EXPIRY_CHECK_THRESHOLD_DAYS',
    default=str(config.DEFAULT_EXPIRY_DAYS),
    show_default=True,
    callback=parse_days,
    help="Report keys expiring within this many days.")
@click.option(
    '--gnupghome',
    type=PathType(file_okay=False),
    default=None,
    help="GPG home directory. Defaults to $GNUPGHOME or ~/.gnupg.")
@click.option(
    '--all-keys',
    default=False,
    is_flag=True,
    help="Check all public keys, not only secret keys.")
@click.pass_obj
def expiring_keys(
        ws: Workspace,
        days: int,
        gnupghome: typing.Optional[pathlib.Path],
        all_keys: bool):
    """List GPG keys and subkeys that are expired or expiring soon."""
    gpg = ws.gpg
    if gnupghome:
        gnupghome = expand(gnupghome)
        if not gnupghome.is_dir():
            raise YkmException(f"Specified GPG home directory does not exist: {gnupghome}")
        gpg = attr.evolve(gpg, home=gnupghome)
        log.info(f"Using GPG home {gnupghome}")
    gpg.require()

    if not all_keys:
        log.info("Checking secret keys only, use --all-keys to check all public keys")
    result = gpg.list_keys(secret=not all_keys)
    if not result.ok:
        for line in result.stderr.splitlines():
            log.error(line)
        raise YkmException(f"Could not list keys: {result.describe()}")

    try:
        records = keys.parse(result.stdout)
    except ValueError as error:
        raise YkmException(f"Could not parse gpg output: {error}") from error
    if not records:
        click.echo("No GPG keys found in the keyring.")
        return

    reports = keys.check(records, days)
    for report in reports:
        if report.attention:
            log.warning(str(report))
        elif report.expiry is keys.Expiry.NO_EXPIRY:
            log.info(str(report))
        else:
            log.debug(str(report))

    attention = [r for r in reports if r.attention]
    if attention:
        click.secho(
            f"Found {len(attention)} key(s) that are expired or expiring within {days} days. "
            f"Extend their expiration or rotate them.", fg='yellow')
    elif all(r.key.expires is None for r in reports):
        click.secho("No keys with expiration dates found in the keyring.", fg='green')
    else:
        click.secho(f"No GPG keys found expiring within the next {days} days.", fg='green')


@main.command()
@dry_run_option
@click.option(
    '--backup',
    default=False,
    is_flag=True,
    help="Copy each file to <file>.<timestamp>.bak first and restore it if sops fails.")
@yes_option
@jobs_option
@globs_option('REKEY_SOPS_DEFAULT_PATHS', config.DEFAULT_REKEY_GLOBS)
@targets_argument
@click.pass_context
def rekey(
        ctx,
        dry_run: bool,
        backup: bool,
        yes: bool,
        jobs: int,
        globs: typing.Sequence[str],
        targets: typing.Sequence[str]):
    """
    Re-encrypt SOPS secrets for the current .sops.yaml recipients.

    Only files that can be decrypted with the current keys are updated.
    """
    ws: Workspace = ctx.obj
    pipeline = Pipeline(
        operation=Rekey(sops=ws.sops),
        root=ws.root,
        default_globs=globs,
        patterns=config.SOPS_PATTERNS)
    summary = pipeline.run(
        targets,
        dry_run=dry_run,
        backup=backup,
        jobs=jobs,
        confirm=None if yes else confirmation)
    finish(ctx, summary)


@main.command()
@identity_option
@jobs_option
@globs_option('AUDIT_SOPS_DEFAULT_PATHS', config.DEFAULT_AUDIT_GLOBS)
@targets_argument
@click.pass_context
def audit(
        ctx,
        identity: typing.Optional[pathlib.Path],
        jobs: int,
        globs: typing.Sequence[str],
        targets: typing.Sequence[str]):
    """
    Check SOPS secrets can be decrypted and are fully encrypted.

    Files that can't be decrypted with the current keys are reported and skipped.
    """
    ws: Workspace = ctx.obj
    pipeline = Pipeline(
        operation=Audit(sops=ws.sops.with_identity(identity and expand(identity))),
        root=ws.root,
        default_globs=globs,
        patterns=config.SOPS_PATTERNS)
    finish(ctx, pipeline.run(targets, jobs=jobs))


@main.command()
@click.option(
    '-o', '--output-dir',
    envvar='REDACT_OUTPUT_DIR_NAME',
    default=config.DEFAULT_REDACT_OUTPUT_DIR,
    show_default=True,
    help="Directory for redacted copies, relative to the project root.")
@dry_run_option
@yes_option
@jobs_option
@globs_option('REDACT_DEFAULT_SOURCE_PATHS', config.DEFAULT_REDACT_GLOBS)
@targets_argument
@click.pass_context
def redact(
        ctx,
        output_dir: str,
        dry_run: bool,
        yes: bool,
        jobs: int,
        globs: typing.Sequence[str],
        targets: typing.Sequence[str]):
    """
    Write copies of files with the value of every 'key: value' line replaced.

    This is superficial: multi-line values and nested structures are not
    redacted. Always review the output before sharing it.
    """
    ws: Workspace = ctx.obj
    output = ws.path(output_dir)
    log.warning("Redaction only replaces values on 'key: value' and 'key=value' lines, "
                "review the output carefully")
    pipeline = Pipeline(
        operation=Redact(output=output, root=ws.root),
        root=ws.root,
        default_globs=globs,
        patterns=config.REDACT_PATTERNS)
    summary = pipeline.run(
        targets,
        dry_run=dry_run,
        jobs=jobs,
        confirm=None if yes else confirmation)
    if summary.succeeded and not dry_run:
        click.echo(f"Redacted files are in {rel(output)}")
    finish(ctx, summary)


@main.command()
@click.argument(
    'sops_file',
    envvar='OFFLINE_VERIFY_SOPS_FILE',
    default=config.DEFAULT_VERIFY_FILE,
    required=False)
@click.option(
    '-i', '--identity',
    type=PathType(dir_okay=False),
    envvar=['RESTORE_AGE_IDENTITY_FILE', 'SOPS_AGE_KEY_FILE'],
    default=None,
    help="AGE identity file to decrypt with (default: $RESTORE_AGE_IDENTITY_FILE "
         "or $SOPS_AGE_KEY_FILE).")
@click.pass_obj
def verify(
        ws: Workspace,
        sops_file: str,
        identity: typing.Optional[pathlib.Path]):
    """
    Check the keys needed to decrypt a SOPS file are available.

    Useful after restoring a backup or provisioning a YubiKey: connect the key
    and decrypt a known secret, discarding the plaintext.
    """
    ws.sops.require()
    path = ws.path(sops_file)
    if not path.is_file():
        raise YkmException(f"SOPS file to test not found: {path}")

    sops = ws.sops
    if identity:
        identity = expand(identity)
        if identity.is_file():
            log.info(f"Using AGE identity {identity}")
            sops = sops.with_identity(identity)
        else:
            log.warning(f"AGE identity file not found: {identity}, "
                        f"sops will use its default key resolution")

    log.warning("If decryption needs a YubiKey, make sure it is connected")
    result = sops.decrypt_check(path)
    if not result.ok:
        log.error(f"Failed to decrypt {rel(path)}: {result.describe()}")
        log.error("Check the YubiKey is connected and its AGE identity or OpenPGP applet works, "
                  "the right identity file or passphrase was used, and that .sops.yaml "
                  "lists a recipient you hold the key for.")
        raise YkmException(f"Could not decrypt {rel(path)}")
    click.secho(f"Decrypted {rel(path)}, the keys are accessible", fg='green')


@main.command(name='validate-config')
@click.pass_obj
def validate_config(ws: Workspace):
    """Check the project's config files and environment variables are set."""
    findings = config.validate(ws.root)
    for finding in findings:
        if finding.present:
            log.info(f"Found {finding.subject}")
        elif finding.level is config.Level.CRITICAL:
            log.error(f"CRITICAL: {finding.subject} is missing. {finding.message}")
        else:
            log.warning(f"Optional: {finding.subject} is missing. {finding.message}")

    missing = [f for f in findings if not f.present]
    errors = [f for f in missing if f.level is config.Level.CRITICAL]
    if errors:
        raise YkmException(
            f"Configuration validation failed with {len(errors)} critical error(s)")
    if missing:
        click.secho(f"Configuration valid with {len(missing)} warning(s)", fg='yellow')
    else:
        click.secho("Configuration valid, all checks passed", fg='green')


@main.command(name='update-recipients')
@click.option(
    '--input-file',
    default=config.DEFAULT_RECIPIENTS_FILE,
    show_default=True,
    help="File with one AGE recipient per line, optionally as 'label: recipient'.")
@click.option(
    '--sops-file',
    default=config.DEFAULT_SOPS_FILE,
    show_default=True)
@click.option(
    '--path-regex',
    default=config.DEFAULT_PATH_REGEX,
    show_default=True,
    help="path_regex of the generated creation rule.")
@dry_run_option
@click.pass_obj
def update_recipients(
        ws: Workspace,
        input_file: str,
        sops_file: str,
        path_regex: str,
        dry_run: bool):
    """
    Rewrite .sops.yaml with the AGE recipients from a file.

    Run 'ykm rekey' afterwards to re-encrypt secrets for the new recipients.
    """
    source = ws.path(input_file)
    if dry_run:
        click.echo(recipients.render(recipients.read_recipients(source), path_regex), nl=False)
        return
    target = ws.path(sops_file)
    recipients.update(source, target, path_regex)
    click.secho(f"Updated {rel(target)}, run 'ykm rekey' to re-encrypt secrets", fg='green')
