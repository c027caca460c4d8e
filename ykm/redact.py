"""
Superficial, line based redaction of 'key: value' and 'key=value' lines.

This does not understand YAML or JSON: multi-line strings, nested values and
anything not written as a single 'key: value' line are passed through as-is.
Always review redacted files before sharing them.
"""

import re

MARKER = 'REDACTED'

PATTERN = re.compile(r'^(?P<key>\s*(?:export\s+)?[A-Za-z_][A-Za-z0-9_]*\s*[:=]\s*)\S')
LINES = re.compile(r'(?<=\n)')


def redact_line(line: str) -> str:
    """Replace the value of a single 'key: value' line, keeping any line ending."""
    body = line.rstrip('\r\n')
    match = PATTERN.match(body)
    if match is None:
        return line
    return f"{match['key']}{MARKER}{line[len(body):]}"


def redact_text(text: str) -> str:
    return ''.join(redact_line(line) for line in LINES.split(text))
