"""
Parse `gpg --with-colons` key listings and find keys close to expiring.

Only the fields needed here are read: the record type (field 1), the key ID
(field 5), the expiration timestamp (field 7) and the user ID (field 10).
"""

import datetime
import enum
import logging
import re
import typing

import attr

log = logging.getLogger(__name__)

PRIMARY = {'pub': "Master Key", 'sec': "Secret Master Key"}
SUBKEY = {'sub': "Subkey", 'ssb': "Secret Subkey"}

ESCAPE = re.compile(r'\\x([0-9a-fA-F]{2})')


class Expiry(enum.Enum):
    EXPIRED = 'expired'
    EXPIRING = 'expiring soon'
    OK = 'ok'
    NO_EXPIRY = 'no expiry'


@attr.s(frozen=True)
class KeyRecord:
    kind: str = attr.ib()
    key_id: str = attr.ib()
    expires: typing.Optional[datetime.datetime] = attr.ib()
    uid: str = attr.ib(default='')

    @property
    def label(self) -> str:
        return PRIMARY.get(self.kind) or SUBKEY.get(self.kind, self.kind)

    def days_left(self, now: datetime.datetime) -> typing.Optional[int]:
        """Whole days until expiry, truncated towards zero (negative once expired)."""
        if self.expires is None:
            return None
        return int((self.expires - now).total_seconds() / 86400)

    def expiry(self, now: datetime.datetime, threshold: datetime.datetime) -> Expiry:
        if self.expires is None:
            return Expiry.NO_EXPIRY
        if self.expires < now:
            return Expiry.EXPIRED
        if self.expires <= threshold:
            return Expiry.EXPIRING
        return Expiry.OK


def unescape(value: str) -> str:
    """Decode the \\xNN escapes gpg uses in colon listings."""
    return ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), value)


def timestamp(value: str) -> typing.Optional[datetime.datetime]:
    if not value:
        return None
    try:
        seconds = int(value)
    except ValueError:
        # gpg may print ISO 8601 timestamps instead of epoch seconds
        return datetime.datetime.strptime(value, '%Y%m%dT%H%M%S').replace(
            tzinfo=datetime.timezone.utc)
    try:
        return datetime.datetime.fromtimestamp(seconds, tz=datetime.timezone.utc)
    except (OverflowError, OSError, ValueError) as error:
        raise ValueError(f"Timestamp out of range: {value}") from error


def parse(output: str) -> typing.Tuple[KeyRecord, ...]:
    """
    Parse key records, giving each key the first user ID of its primary key.

    The uid records follow the primary key record, so keys are collected for a
    whole block before they are built.
    """
    records: typing.List[KeyRecord] = []
    block: typing.List[typing.Tuple[str, str, typing.Optional[datetime.datetime]]] = []
    uid = ''

    def flush():
        records.extend(KeyRecord(kind, key_id, expires, uid) for kind, key_id, expires in block)

    for line in output.splitlines():
        fields = line.split(':')
        kind = fields[0]
        if kind in PRIMARY:
            flush()
            block, uid = [], ''
        if kind in PRIMARY or kind in SUBKEY:
            if len(fields) < 7:
                log.debug(f"Ignoring short key record: {line}")
                continue
            block.append((kind, fields[4], timestamp(fields[6])))
        elif kind == 'uid' and not uid and len(fields) >= 10:
            uid = unescape(fields[9])
    flush()
    return tuple(records)


@attr.s(frozen=True)
class KeyReport:
    key: KeyRecord = attr.ib()
    expiry: Expiry = attr.ib()
    days_left: typing.Optional[int] = attr.ib()

    @property
    def attention(self) -> bool:
        return self.expiry in (Expiry.EXPIRED, Expiry.EXPIRING)

    def __str__(self):
        uid = self.key.uid or "(no user ID)"
        text = f"[{self.expiry.value.upper()}] {self.key.label} {self.key.key_id} {uid}"
        if self.key.expires is None:
            return text
        date = f"{self.key.expires:%Y-%m-%d %H:%M:%S %Z}"
        if self.expiry is Expiry.EXPIRED:
            return f"{text}: expired on {date} ({-self.days_left} days ago)"
        return f"{text}: expires on {date} (in {self.days_left} days)"


def check(
        keys: typing.Iterable[KeyRecord],
        days: int,
        now: typing.Optional[datetime.datetime] = None) -> typing.Tuple[KeyReport, ...]:
    now = now or datetime.datetime.now(tz=datetime.timezone.utc)
    threshold = now + datetime.timedelta(days=days)
    log.info(f"Checking for keys expiring on or before {threshold:%Y-%m-%d %H:%M:%S %Z}")
    return tuple(
        KeyReport(key, key.expiry(now, threshold), key.days_left(now))
        for key in keys)
