import logging
import pathlib
import typing

import click.testing
import pytest

import ykm.cli

# Files "decrypt" if they contain a sops: block. updatekeys damages and then
# fails on files containing FAIL_REKEY; filestatus reports PLAINTEXT files as
# not encrypted. Every call is appended to $FAKE_SOPS_LOG when it is set.
FAKE_SOPS = """\
#!/bin/sh
if [ -n "$FAKE_SOPS_LOG" ]; then
    echo "$*" >> "$FAKE_SOPS_LOG"
fi
case "$1" in
    --decrypt)
        grep -q 'sops:' "$2"
        ;;
    updatekeys)
        if grep -q FAIL_REKEY "$3"; then
            echo "partially rewritten" >> "$3"
            echo "failed to update keys" >&2
            exit 1
        fi
        ;;
    filestatus)
        if grep -q PLAINTEXT "$2"; then
            echo '{"encrypted": false}'
        else
            echo '{"encrypted": true}'
        fi
        ;;
    *)
        echo "unknown command $1" >&2
        exit 2
        ;;
esac
"""

# Prints $FAKE_GPG_OUTPUT and records its arguments and GNUPGHOME.
FAKE_GPG = """\
#!/bin/sh
if [ -n "$FAKE_GPG_ARGS" ]; then
    echo "$* GNUPGHOME=$GNUPGHOME" > "$FAKE_GPG_ARGS"
fi
cat "$FAKE_GPG_OUTPUT"
"""

ENCRYPTED = """\
password: ENC[AES256_GCM,data:abc=,iv:def=,tag:ghi=,type:str]
sops:
    age:
        - recipient: age1example
    version: 3.10.2
"""

ENVIRONMENT = (
    'YKM_PROJECT_ROOT', 'YKM_LOG_FILE', 'YKM_JOBS', 'YKM_TOOL_TIMEOUT', 'YKM_SOPS_BIN',
    'YKM_GPG_BIN', 'LOG_LEVEL', 'REKEY_SOPS_DEFAULT_PATHS', 'AUDIT_SOPS_DEFAULT_PATHS',
    'REDACT_DEFAULT_SOURCE_PATHS', 'REDACT_OUTPUT_DIR_NAME', 'OFFLINE_VERIFY_SOPS_FILE',
    'RESTORE_AGE_IDENTITY_FILE', 'SOPS_AGE_KEY_FILE', 'GPG_EXPIRY_CHECK_THRESHOLD_DAYS',
    'GPG_USER_NAME', 'GPG_USER_EMAIL', 'PRIMARY_YUBIKEY_SERIAL',
    'AGE_PRIMARY_YUBIKEY_IDENTITY_FILE', 'GNUPGHOME',
)


def write_script(path: pathlib.Path, text: str) -> pathlib.Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    path.chmod(0o755)
    return path


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ENVIRONMENT:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    level = root.level
    yield
    for handler in root.handlers[:]:
        if type(handler) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture()
def fake_sops(tmp_path) -> pathlib.Path:
    return write_script(tmp_path / 'bin' / 'sops', FAKE_SOPS)


@pytest.fixture()
def fake_gpg(tmp_path) -> pathlib.Path:
    return write_script(tmp_path / 'bin' / 'gpg', FAKE_GPG)


@pytest.fixture()
def sops_log(tmp_path, monkeypatch) -> pathlib.Path:
    path = tmp_path / 'sops.log'
    path.touch()
    monkeypatch.setenv('FAKE_SOPS_LOG', str(path))
    return path


@pytest.fixture()
def project(tmp_path) -> pathlib.Path:
    root = tmp_path / 'project'
    (root / 'secrets').mkdir(parents=True)
    return root


@pytest.fixture()
def secret(project):
    def secret_func(name: str, text: str = ENCRYPTED) -> pathlib.Path:
        path = project / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
        return path

    return secret_func


@pytest.fixture()
def invoke(project, fake_sops, fake_gpg):
    def invoke_func(
            arguments: typing.Sequence[str],
            exit_code: int = 0,
            input: typing.Optional[str] = None) -> typing.List[str]:
        assert all(isinstance(arg, str) for arg in arguments)
        runner = click.testing.CliRunner()
        result = runner.invoke(ykm.cli.main, [
            '--path', str(project),
            '--sops-bin', str(fake_sops),
            '--gpg-bin', str(fake_gpg),
            *arguments,
        ], input=input)
        if result.exit_code != exit_code:
            message = (f"Command ykm {' '.join(arguments)} exited with {result.exit_code}, "
                       f"expected {exit_code}:\n{result.output}")
            raise Exception(message) from result.exception
        return result.output.splitlines()

    return invoke_func
