"""Conversions between Event and its local-cache and remote (Airtable) encodings."""
import logging
from datetime import datetime
from typing import Any, Type, TypeVar

from events.errors import InvalidRecord
from events.models import Event, EventStatus, EventType, normalize_timestamp

logger = logging.getLogger(__name__)

E = TypeVar('E', EventType, EventStatus)

# Remote fields that must be present for a record to be usable
REQUIRED_REMOTE_FIELDS = ('ID', 'Title', 'StartDate', 'EndDate')


def format_timestamp(value: datetime) -> str:
    """
    Format a datetime as ISO 8601 UTC with millisecond precision.

    Naive datetimes are taken to be UTC.

    Args:
        value: Datetime to format

    Returns:
        String such as ``2024-01-15T19:00:00.000Z``
    """
    value = normalize_timestamp(value)
    return value.strftime('%Y-%m-%dT%H:%M:%S') + f'.{value.microsecond // 1000:03d}Z'


def parse_timestamp(value: Any) -> datetime:
    """
    Parse an ISO 8601 timestamp into an aware UTC datetime.

    Args:
        value: ISO 8601 string (a trailing ``Z`` is accepted) or datetime

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        ValueError: If the value is empty or not a parseable timestamp
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"Not a timestamp: {value!r}")
        text = value.strip()
        if text.endswith('Z') or text.endswith('z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)

    return normalize_timestamp(parsed)


def parse_enum(enum_cls: Type[E], value: Any) -> E:
    """
    Case-normalizing, total lookup of an enum member by value.

    Unrecognized or missing values fall back to the first declared member.
    """
    if isinstance(value, enum_cls):
        return value
    token = str(value or '').strip().lower()
    for member in enum_cls:
        if member.value == token:
            return member
    fallback = next(iter(enum_cls))
    logger.debug(f"Unrecognized {enum_cls.__name__} value {value!r}, using {fallback.value}")
    return fallback


def _capitalize(member) -> str:
    return member.value.capitalize()


# Local cache form

def to_local_form(event: Event) -> dict:
    """
    Convert an Event to the JSON-safe dict kept in the local cache.

    Args:
        event: Event object

    Returns:
        Dictionary with ISO 8601 timestamps and lowercase enum tokens
    """
    record = {
        'id': event.id,
        'title': event.title,
        'description': event.description or '',
        'start': format_timestamp(event.start),
        'end': format_timestamp(event.end),
        'type': event.type.value,
        'status': event.status.value,
    }
    if event.remote_id:
        record['remoteId'] = event.remote_id
    return record


def from_local_form(record: dict, allow_new: bool = False) -> Event:
    """
    Convert a local cache dict back into an Event.

    Args:
        record: Dictionary previously produced by to_local_form
        allow_new: Accept an empty id (an event that has not been saved yet)

    Returns:
        Event object

    Raises:
        InvalidRecord: If id or title is missing or a timestamp does not parse
    """
    if not isinstance(record, dict):
        raise InvalidRecord(f"Expected an object, got {type(record).__name__}")
    if not record.get('title') or not (record.get('id') or allow_new):
        raise InvalidRecord(f"Record missing id or title: {record.get('id')!r}")
    try:
        start = parse_timestamp(record.get('start'))
        end = parse_timestamp(record.get('end'))
    except ValueError as e:
        raise InvalidRecord(f"Record {record.get('id')!r} has an invalid timestamp: {e}") from e

    return Event(
        id=str(record.get('id') or ''),
        title=str(record['title']),
        description=record.get('description') or '',
        start=start,
        end=end,
        type=parse_enum(EventType, record.get('type')),
        status=parse_enum(EventStatus, record.get('status')),
        remote_id=record.get('remoteId') or None,
    )


# Remote (Airtable) form

def to_remote_fields(event: Event) -> dict:
    """Field mapping sent to the remote table on create and update."""
    return {
        'ID': event.id,
        'Title': event.title,
        'Description': event.description or '',
        'StartDate': format_timestamp(event.start),
        'EndDate': format_timestamp(event.end),
        'Type': _capitalize(event.type),
        'Status': _capitalize(event.status),
    }


def to_remote_form(event: Event) -> dict:
    """Full remote record: the remote id plus the field mapping."""
    record = {'fields': to_remote_fields(event)}
    if event.remote_id:
        record['id'] = event.remote_id
    return record


def is_valid_remote_record(record: Any) -> bool:
    """
    Check that a remote record can be decoded.

    Never raises; callers drop records for which this returns False.
    """
    if not isinstance(record, dict):
        return False
    fields = record.get('fields')
    if not isinstance(fields, dict):
        return False
    if not all(fields.get(name) for name in REQUIRED_REMOTE_FIELDS):
        return False
    try:
        parse_timestamp(fields['StartDate'])
        parse_timestamp(fields['EndDate'])
    except ValueError:
        return False
    return True


def from_remote_form(record: dict) -> Event:
    """
    Convert a remote record into an Event.

    Callers are expected to check is_valid_remote_record first.

    Args:
        record: Airtable record with ``id`` and ``fields``

    Returns:
        Event object carrying the remote record id
    """
    fields = record['fields']
    return Event(
        id=str(fields['ID']),
        title=str(fields['Title']),
        description=fields.get('Description') or '',
        start=parse_timestamp(fields['StartDate']),
        end=parse_timestamp(fields['EndDate']),
        type=parse_enum(EventType, fields.get('Type')),
        status=parse_enum(EventStatus, fields.get('Status')),
        remote_id=record.get('id') or None,
    )
