import datetime

import pytest

from ykm import keys

NOW = datetime.datetime(2026, 1, 1, tzinfo=datetime.timezone.utc)


def epoch(**delta) -> str:
    return str(int((NOW + datetime.timedelta(**delta)).timestamp()))


LISTING = f"""\
sec:u:255:22:AAAA1111AAAA1111:1700000000:{epoch(days=400)}::u:::cESC:::+:::ed25519:::0:
fpr:::::::::0123456789ABCDEF0123456789ABCDEFAAAA1111:
uid:u::::1700000000::HASH::Alice Example \\x3calice@example.com\\x3e::::::::::0:
uid:u::::1700000000::HASH::Alice Other \\x3calice@example.org\\x3e::::::::::0:
ssb:u:255:18:BBBB2222BBBB2222:1700000000:{epoch(days=10)}:::::e:::+:::cv25519::
ssb:e:255:22:CCCC3333CCCC3333:1700000000:{epoch(days=-3, hours=-1)}:::::s:::+:::ed25519::
sec:u:255:22:DDDD4444DDDD4444:1700000000:::u:::cESC:::+:::ed25519:::0:
uid:u::::1700000000::HASH::Bob \\x3cbob@example.com\\x3e::::::::::0:
"""


def test_parse():
    records = keys.parse(LISTING)
    assert [(r.kind, r.key_id) for r in records] == [
        ('sec', 'AAAA1111AAAA1111'),
        ('ssb', 'BBBB2222BBBB2222'),
        ('ssb', 'CCCC3333CCCC3333'),
        ('sec', 'DDDD4444DDDD4444'),
    ]
    assert records[0].uid == records[1].uid == "Alice Example <alice@example.com>"
    assert records[3].uid == "Bob <bob@example.com>"
    assert records[3].expires is None
    assert records[1].label == "Secret Subkey"


def test_check():
    reports = keys.check(keys.parse(LISTING), days=30, now=NOW)
    assert [r.expiry for r in reports] == [
        keys.Expiry.OK,
        keys.Expiry.EXPIRING,
        keys.Expiry.EXPIRED,
        keys.Expiry.NO_EXPIRY,
    ]
    assert [r.days_left for r in reports] == [400, 10, -3, None]
    assert [r.attention for r in reports] == [False, True, True, False]


def test_threshold_is_inclusive():
    (key,) = keys.parse(f"pub:u:255:22:EEEE:1:{epoch(days=30)}::u:::\n")
    (report,) = keys.check([key], days=30, now=NOW)
    assert report.expiry is keys.Expiry.EXPIRING


def test_report_text():
    reports = keys.check(keys.parse(LISTING), days=30, now=NOW)
    assert str(reports[1]).startswith(
        "[EXPIRING SOON] Secret Subkey BBBB2222BBBB2222 Alice Example <alice@example.com>: "
        "expires on 2026-01-11")
    assert str(reports[2]).endswith("(3 days ago)")
    assert str(reports[3]) == "[NO EXPIRY] Secret Master Key DDDD4444DDDD4444 Bob <bob@example.com>"


def test_iso_timestamps():
    (key,) = keys.parse("pub:u:255:22:EEEE:1:20260301T120000::u:::\n")
    assert key.expires == datetime.datetime(2026, 3, 1, 12, tzinfo=datetime.timezone.utc)


def test_ignores_other_records():
    assert keys.parse("tru::1:1700000000:0:3:1:5\nfpr:::::::::ABC:\n") == ()


@pytest.fixture()
def gpg_output(tmp_path, monkeypatch):
    def gpg_output_func(text: str):
        path = tmp_path / 'gpg-output'
        path.write_text(text)
        monkeypatch.setenv('FAKE_GPG_OUTPUT', str(path))
        monkeypatch.setenv('FAKE_GPG_ARGS', str(tmp_path / 'gpg-args'))
        return tmp_path / 'gpg-args'

    return gpg_output_func


def test_expiring_keys_command(invoke, gpg_output):
    expiring = str(int((datetime.datetime.now(tz=datetime.timezone.utc)
                        + datetime.timedelta(days=5)).timestamp()))
    args = gpg_output(f"sec:u:255:22:AAAA1111:1:{expiring}::u:::\nuid:u::::1::H::Alice::::\n")

    output = invoke(['expiring-keys'])

    assert any('[EXPIRING SOON] Secret Master Key AAAA1111 Alice' in line for line in output)
    assert any('Found 1 key(s)' in line for line in output)
    assert '--list-secret-keys' in args.read_text()


def test_expiring_keys_all_keys_and_home(invoke, gpg_output, tmp_path):
    args = gpg_output("pub:u:255:22:AAAA1111:1:::u:::\n")
    home = tmp_path / 'gnupg'
    home.mkdir()

    output = invoke(['expiring-keys', '--all-keys', '--gnupghome', str(home), '--days', '7'])

    assert '--list-keys' in args.read_text()
    assert f'GNUPGHOME={home}' in args.read_text()
    assert any('No keys with expiration dates' in line for line in output)


def test_expiring_keys_empty_keyring(invoke, gpg_output):
    gpg_output("")
    assert "No GPG keys found in the keyring." in invoke(['expiring-keys'])


@pytest.mark.parametrize('days', ['-1', 'soon', '1.5'])
def test_expiring_keys_invalid_days(invoke, gpg_output, days):
    gpg_output("")
    output = invoke(['expiring-keys', '--days', days], exit_code=1)
    assert any('Must be a non-negative integer' in line for line in output)


def test_expiring_keys_days_from_environment(invoke, gpg_output, monkeypatch):
    gpg_output("")
    monkeypatch.setenv('GPG_EXPIRY_CHECK_THRESHOLD_DAYS', 'x')
    invoke(['expiring-keys'], exit_code=1)


def test_expiring_keys_missing_home(invoke, gpg_output, tmp_path):
    gpg_output("")
    invoke(['expiring-keys', '--gnupghome', str(tmp_path / 'missing')], exit_code=1)


def test_out_of_range_timestamp():
    with pytest.raises(ValueError):
        keys.parse("pub:u:255:22:EEEE:1:99999999999999999999::u:::\n")


def test_expiring_keys_out_of_range_timestamp(invoke, gpg_output):
    gpg_output("sec:u:255:22:AAAA1111:1:99999999999999999999::u:::\n")
    output = invoke(['expiring-keys'], exit_code=1)
    assert any('Could not parse gpg output' in line for line in output)
