"""AWS Lambda handler for the course attendance tracker."""
import json
import logging
import time
from typing import Any, Dict

from processor.attendance import compute_statistics, reconcile_attendance
from processor.config import AttendanceConfig
from processor.ics_parser import IcsEventParser
from processor.models import AttendanceStatistics
from scraper.ics_feed import FetchError, IcsFeedFetcher
from storage.attendance_table import AttendanceTableManager

logger = logging.getLogger(__name__)


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

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


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


def run_update(
    config: AttendanceConfig,
    fetcher: IcsFeedFetcher,
    store: AttendanceTableManager
) -> Dict[str, Any]:
    """
    Run a full update: fetch, parse, reconcile, compute and save.

    Stored attendance is read before anything is written, and the table is
    only overwritten once the merged view is complete.

    Args:
        config: Run configuration
        fetcher: Feed fetcher
        store: Attendance table

    Returns:
        Summary with event count, statistics and save counts

    Raises:
        FetchError: If the feed cannot be retrieved; nothing is written
    """
    stored_attendance = store.load_attendance()

    logger.info("Fetching calendar feed")
    feed_text = fetcher.fetch(config.feed_url)

    logger.info("Parsing calendar feed")
    events = IcsEventParser().parse(feed_text)

    logger.info("Reconciling attendance")
    events = reconcile_attendance(events, stored_attendance)
    statistics = compute_statistics(
        events,
        now=config.current_time(),
        optional_types=config.optional_types,
        target=config.target_ratio
    )

    logger.info("Writing attendance table")
    save_result = store.save_table(events, statistics)

    return {
        'events': len(events),
        'statistics': statistics,
        'rows_written': save_result.written,
        'rows_deleted': save_result.deleted
    }


def recompute_statistics(
    config: AttendanceConfig,
    store: AttendanceTableManager
) -> AttendanceStatistics:
    """
    Recompute statistics from stored events without refetching the feed.

    Args:
        config: Run configuration
        store: Attendance table

    Returns:
        Fresh AttendanceStatistics; only the statistics row is rewritten,
        so stored event rows are never deleted by a recompute
    """
    events = store.load_events()
    statistics = compute_statistics(
        events,
        now=config.current_time(),
        optional_types=config.optional_types,
        target=config.target_ratio
    )
    store.save_statistics(statistics)
    return statistics


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {'statusCode': status_code, 'body': json.dumps(body)}


def _error_body(message: str, error: Exception, start_time: float) -> Dict[str, Any]:
    return {
        'message': message,
        'error': str(error),
        'error_type': type(error).__name__,
        'duration_seconds': round(time.time() - start_time, 2)
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for the attendance tracker.

    Supported actions (event["action"]):
        update: fetch the feed and rebuild the table (default)
        recompute: recompute statistics from stored events
        set_attendance: record event["attended"] for event["uid"]

    Args:
        event: Invocation payload (EventBridge schedule or direct call)
        context: Lambda context object

    Returns:
        Response dict with statusCode and JSON body
    """
    start_time = time.time()
    event = event or {}

    try:
        config = AttendanceConfig.from_env()
    except ValueError as e:
        setup_logging()
        logger.error(f"Invalid configuration: {e}")
        return _response(500, _error_body('Invalid configuration', e, start_time))

    setup_logging(config.log_level)

    action = event.get('action', 'update')
    logger.info(
        "Lambda execution started",
        extra={'action': action, 'table_name': config.table_name}
    )

    try:
        store = AttendanceTableManager(table_name=config.table_name)

        if action == 'update':
            fetcher = IcsFeedFetcher(
                timeout=config.timeout_seconds,
                max_retries=config.fetch_retries
            )
            try:
                result = run_update(config, fetcher, store)
            except FetchError as e:
                logger.error(
                    f"Failed to fetch calendar feed: {e}",
                    extra={'status_code': e.status_code, 'reason': e.reason},
                    exc_info=True
                )
                body = _error_body('Failed to fetch calendar feed', e, start_time)
                body['status_code'] = e.status_code
                body['reason'] = e.reason
                return _response(502, body)

            body = {
                'message': 'Update completed successfully',
                'events': result['events'],
                'statistics': result['statistics'].to_dict(),
                'rows_written': result['rows_written'],
                'rows_deleted': result['rows_deleted']
            }

        elif action == 'recompute':
            statistics = recompute_statistics(config, store)
            body = {
                'message': 'Statistics recomputed successfully',
                'statistics': statistics.to_dict()
            }

        elif action == 'set_attendance':
            uid = event.get('uid')
            attended = event.get('attended')
            if not uid or not isinstance(attended, bool):
                return _response(400, {'message': "set_attendance requires 'uid' and a boolean 'attended'"})
            try:
                store.set_attended(uid, attended)
            except KeyError:
                return _response(404, {'message': f"No event with uid {uid}"})
            body = {'message': 'Attendance recorded', 'uid': uid, 'attended': attended}

        else:
            return _response(400, {'message': f"Unknown action: {action}"})

        body['duration_seconds'] = round(time.time() - start_time, 2)
        logger.info(
            "Lambda execution completed successfully",
            extra={'action': action, 'duration_seconds': body['duration_seconds']}
        )
        return _response(200, body)

    except Exception as e:
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        body = _error_body('Attendance update failed', e, start_time)
        body['note'] = 'Previous attendance table remains in DynamoDB'
        return _response(500, body)
