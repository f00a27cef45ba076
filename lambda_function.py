"""AWS Lambda handler exposing the calendar event operations."""
import json
import logging
import time
from dataclasses import asdict
from typing import Dict, Any

from events.codec import from_local_form, to_local_form
from events.errors import InvalidRecord, RemoteRejected, RemoteUnavailable
from events.issues import IssueSink
from events.models import sort_by_start
from sync.config import SyncConfig
from sync.coordinator import build_coordinator

OPERATIONS = ('load', 'save_all', 'create', 'update', 'delete')

# Attributes every LogRecord has; anything else came in through extra=
RESERVED_LOG_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'asctime'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in RESERVED_LOG_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _parse_request(event: Dict[str, Any]) -> Dict[str, Any]:
    """Accept either a direct invocation payload or an API Gateway event with a JSON body."""
    body = event.get('body')
    if isinstance(body, str):
        return json.loads(body or '{}')
    if isinstance(body, dict):
        return body
    return event


def _response(status_code: int, payload: Dict[str, Any], start_time: float) -> Dict[str, Any]:
    payload['duration_seconds'] = round(time.time() - start_time, 2)
    return {
        'statusCode': status_code,
        'body': json.dumps(payload)
    }


def _error(status_code: int, message: str, error: Exception, start_time: float) -> Dict[str, Any]:
    return _response(status_code, {
        'message': message,
        'error': str(error),
        'error_type': type(error).__name__
    }, start_time)


def dispatch(coordinator, operation: str, request: Dict[str, Any]) -> Dict[str, Any]:
    """
    Run one operation against the coordinator.

    Args:
        coordinator: SyncCoordinator for this invocation
        operation: One of OPERATIONS
        request: Parsed request payload

    Returns:
        Result payload for the response body
    """
    if operation == 'load':
        events = sort_by_start(coordinator.load())
        return {'events': [to_local_form(e) for e in events], 'count': len(events)}

    if operation == 'save_all':
        events = [from_local_form(record, allow_new=True) for record in request['events']]
        coordinator.save_all(events)
        return {'count': len(events)}

    if operation == 'create':
        created = coordinator.create_one(from_local_form(request['event'], allow_new=True))
        return {'event': to_local_form(created)}

    if operation == 'update':
        updated = coordinator.update_one(from_local_form(request['event'], allow_new=True))
        return {'event': to_local_form(updated)}

    if operation == 'delete':
        if not isinstance(request['event_id'], str):
            raise ValueError(f"event_id must be a string, got {type(request['event_id']).__name__}")
        coordinator.delete_one(request['event_id'])
        return {'event_id': request['event_id']}

    raise ValueError(f"Unknown operation: {operation}")


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler for calendar event storage.

    Args:
        event: Invocation payload with ``operation`` and its arguments
        context: Lambda context object

    Returns:
        Response dict with statusCode and a JSON body
    """
    config = SyncConfig.from_env()

    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()

    try:
        request = _parse_request(event)
        operation = request.get('operation', '')
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown operation: {operation!r}")
    except ValueError as e:
        logger.warning(f"Rejected malformed request: {e}")
        return _error(400, 'Invalid request', e, start_time)

    logger.info(
        f"Lambda execution started",
        extra={'operation': operation, 'storage_mode': config.mode.value}
    )

    sink = IssueSink()

    try:
        coordinator = build_coordinator(config, sink)
        result = dispatch(coordinator, operation, request)
    except (KeyError, TypeError, ValueError, InvalidRecord) as e:
        logger.warning(f"Invalid {operation} request: {e}")
        return _error(400, 'Invalid request', e, start_time)
    except RemoteUnavailable as e:
        logger.error(
            f"Airtable unavailable during {operation}: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _error(503, 'Remote store unavailable', e, start_time)
    except RemoteRejected as e:
        logger.error(
            f"Airtable rejected {operation}: {str(e)}",
            extra={'error_type': type(e).__name__, 'status_code': e.status_code},
            exc_info=True
        )
        return _error(502, 'Remote store rejected the request', e, start_time)
    except Exception as e:
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _error(500, f"Operation {operation} failed", e, start_time)

    result['message'] = f"Operation {operation} completed successfully"
    result['storage_mode'] = config.mode.value
    result['issues'] = [asdict(issue) for issue in sink.issues]

    logger.info(
        f"Lambda execution completed successfully",
        extra={'operation': operation, 'issues': len(sink.issues)}
    )

    return _response(200, result, start_time)
