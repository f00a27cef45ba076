"""Airtable REST client for the authoritative event table."""
import logging
import time
from dataclasses import replace
from typing import List, Optional, Sequence
from urllib.parse import quote

import requests

from events.codec import from_remote_form, is_valid_remote_record, to_remote_fields
from events.errors import RemoteRejected, RemoteUnavailable
from events.models import Event

logger = logging.getLogger(__name__)


class AirtableClient:
    """Client for list/create/update/delete against one Airtable table."""

    BASE_URL = "https://api.airtable.com/v0"
    META_URL = "https://api.airtable.com/v0/meta/bases"

    BATCH_SIZE = 10  # Airtable limit on records per create request
    PAGE_SIZE = 100
    REQUIRED_FIELDS = ('ID', 'Title', 'Description', 'StartDate', 'EndDate', 'Type', 'Status')

    def __init__(
        self,
        base_id: str,
        api_key: str,
        table_name: str = 'Calendar Events',
        timeout: float = 10,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        """
        Initialize the Airtable client.

        Args:
            base_id: Airtable base identifier
            api_key: Personal access token, sent as a bearer credential
            table_name: Name of the events table
            timeout: HTTP request timeout in seconds (default: 10)
            max_retries: Attempts per request for transient failures (default: 3)
            retry_delay: Initial backoff delay in seconds, doubled per retry
        """
        self.base_id = base_id
        self.table_name = table_name
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.table_url = f"{self.BASE_URL}/{base_id}/{quote(table_name, safe='')}"
        self.last_invalid_count = 0

        self.session = requests.Session()
        self.session.headers.update({
            'Authorization': f"Bearer {api_key}",
            'Content-Type': 'application/json'
        })

    def list_events(self) -> List[Event]:
        """
        Fetch every event in the table, following pagination.

        Records missing required fields or carrying unparseable dates are
        skipped and counted in ``last_invalid_count``.

        Returns:
            List of Event objects sorted by start date
        """
        params = {
            'pageSize': self.PAGE_SIZE,
            'sort[0][field]': 'StartDate',
            'sort[0][direction]': 'asc'
        }
        records = []
        page = 0

        while True:
            page += 1
            data = self._request('GET', params=params)
            records.extend(data.get('records', []))
            offset = data.get('offset')
            if not offset:
                break
            logger.debug(f"Fetched page {page}, following offset {offset}")
            params = dict(params, offset=offset)

        events = [from_remote_form(record) for record in records if is_valid_remote_record(record)]
        self.last_invalid_count = len(records) - len(events)
        if self.last_invalid_count:
            logger.warning(
                f"Skipped {self.last_invalid_count} invalid records out of {len(records)}"
            )

        logger.info(f"Retrieved {len(events)} events from Airtable")
        return events

    def create_events(self, events: Sequence[Event]) -> List[Event]:
        """
        Create events in batches of 10, one request after another.

        Args:
            events: Events to create

        Returns:
            The created events, in input order, carrying their remote ids
        """
        if not events:
            return []

        logger.info(f"Creating {len(events)} events in Airtable")
        created = []

        for i in range(0, len(events), self.BATCH_SIZE):
            batch = list(events[i:i + self.BATCH_SIZE])
            payload = {'records': [{'fields': to_remote_fields(event)} for event in batch]}
            try:
                data = self._request('POST', payload=payload)
            except (RemoteUnavailable, RemoteRejected):
                logger.error(
                    f"Batch {i // self.BATCH_SIZE + 1} failed after creating "
                    f"{len(created)} of {len(events)} events"
                )
                raise

            returned = data.get('records', [])
            if len(returned) != len(batch):
                raise RemoteUnavailable(
                    f"Airtable returned {len(returned)} records for a batch of {len(batch)} "
                    f"after creating {len(created)} of {len(events)} events"
                )
            for event, record in zip(batch, returned):
                created.append(replace(event, remote_id=record.get('id')))

        logger.info(f"Successfully created {len(created)} events")
        return created

    def create_event(self, event: Event) -> Event:
        """Create a single event and return it with its remote id."""
        created = self.create_events([event])
        if not created:
            raise RemoteUnavailable(f"Airtable returned no record for event '{event.id}'")
        return created[0]

    def update_event(self, event: Event, record_id: str) -> Event:
        """
        Overwrite the fields of an existing remote record.

        Args:
            event: Event holding the new field values
            record_id: Remote record identifier

        Returns:
            The event carrying the remote id
        """
        data = self._request('PATCH', path=f"/{record_id}", payload={'fields': to_remote_fields(event)})
        return replace(event, remote_id=data.get('id', record_id))

    def delete_event(self, record_id: str) -> None:
        """Delete a remote record by its remote identifier."""
        self._request('DELETE', path=f"/{record_id}")
        logger.info(f"Deleted Airtable record {record_id}")

    def find_record_id(self, event_id: str) -> Optional[str]:
        """
        Look up the remote record id for a domain event id.

        Args:
            event_id: Value of the ID field

        Returns:
            Remote record id, or None if no record carries that ID
        """
        escaped = event_id.replace('\\', '\\\\').replace("'", "\\'")
        params = {
            'filterByFormula': f"{{ID}} = '{escaped}'",
            'maxRecords': 1
        }
        data = self._request('GET', params=params)
        records = data.get('records', [])
        if not records:
            return None
        return records[0].get('id')

    def missing_fields(self) -> List[str]:
        """
        Compare the table schema against the fields this client writes.

        Returns:
            Names of required fields the table does not have
        """
        data = self._request('GET', url=f"{self.META_URL}/{self.base_id}/tables")
        for table in data.get('tables', []):
            if self.table_name in (table.get('name'), table.get('id')):
                present = {field.get('name') for field in table.get('fields', [])}
                return [name for name in self.REQUIRED_FIELDS if name not in present]
        raise RemoteRejected(f"Table '{self.table_name}' not found in base {self.base_id}", 404)

    def _request(
        self,
        method: str,
        path: str = '',
        params: dict = None,
        payload: dict = None,
        url: str = None
    ) -> dict:
        """
        Send a request, retrying transient failures with exponential backoff.

        POST is not idempotent, so it is only retried when the server
        answered 429 and therefore did not apply it.

        Returns:
            Decoded JSON body

        Raises:
            RemoteUnavailable: Network failure, timeout, 429 or 5xx after all retries
            RemoteRejected: Any other non-success status
        """
        url = url or f"{self.table_url}{path}"
        idempotent = method != 'POST'
        error = None

        for attempt in range(self.max_retries):
            retryable = idempotent
            try:
                response = self.session.request(
                    method,
                    url,
                    params=params,
                    json=payload,
                    timeout=self.timeout
                )
            except requests.RequestException as e:
                error = RemoteUnavailable(f"{method} {url} failed: {e}")
            else:
                if response.ok:
                    return self._decode(response)
                status = response.status_code
                if status == 429 or status >= 500:
                    retryable = idempotent or status == 429
                    error = RemoteUnavailable(f"Airtable API error: {status} - {response.text}")
                else:
                    logger.error(f"Airtable rejected {method} {url}: {status} - {response.text}")
                    raise RemoteRejected(f"Airtable API error: {status} - {response.text}", status)

            if retryable and attempt < self.max_retries - 1:
                delay = self.retry_delay * (2 ** attempt)
                logger.warning(
                    f"Request failed (attempt {attempt + 1}/{self.max_retries}): {error}. "
                    f"Retrying in {delay} seconds..."
                )
                time.sleep(delay)
            else:
                break

        logger.error(f"{method} {url} gave up after {attempt + 1} attempt(s). Last error: {error}")
        raise error

    def _decode(self, response: requests.Response) -> dict:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise RemoteUnavailable(f"Malformed response from Airtable: {e}") from e
