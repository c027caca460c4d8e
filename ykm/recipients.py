"""
Regenerate the .sops.yaml creation rules from a file of AGE recipients.

The recipients file has one recipient per line, optionally labelled:

    # comments and blank lines are ignored
    alice-yubikey: age1yubikey1q...
    age1qyqszqgpqyqszqgpqyqszqgpqyqszqgpqyqszqgpqyqszqgp...
"""

import logging
import pathlib
import typing

import yaml

from .utils import YkmException

log = logging.getLogger(__name__)


def read_recipients(path: pathlib.Path) -> typing.Tuple[str, ...]:
    try:
        lines = path.read_text(encoding='utf-8').splitlines()
    except OSError as error:
        raise YkmException(f"Could not read recipients from {path}: {error}") from error

    recipients: typing.List[str] = []
    for line in lines:
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        recipient = line.rsplit(':', 1)[-1].strip()
        if recipient and recipient not in recipients:
            recipients.append(recipient)

    if not recipients:
        raise YkmException(f"No recipients found in {path}")
    log.info(f"Read {len(recipients)} recipient(s) from {path}")
    return tuple(recipients)


def render(recipients: typing.Sequence[str], path_regex: str) -> str:
    """Render a .sops.yaml with a single creation rule for the recipients."""
    rules = {
        'creation_rules': [
            {'path_regex': path_regex, 'age': ','.join(recipients)},
        ],
    }
    return yaml.safe_dump(rules, default_flow_style=False, sort_keys=False)


def update(
        recipients_file: pathlib.Path,
        sops_file: pathlib.Path,
        path_regex: str) -> str:
    text = render(read_recipients(recipients_file), path_regex)
    sops_file.write_text(text, encoding='utf-8')
    log.info(f"Updated {sops_file} with current recipients")
    return text
