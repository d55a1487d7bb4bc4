"""DynamoDB-backed attendance table."""
import hashlib
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from processor.models import AttendanceStatistics, CalendarEvent, SaveResult

logger = logging.getLogger(__name__)

EVENT_RECORD = 'event'
STATISTICS_RECORD = 'statistics'
STATISTICS_ROW_ID = '__statistics__'


class AttendanceTableManager:
    """Manager for the attendance table in DynamoDB."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    def __init__(self, table_name: str):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized AttendanceTableManager for table: {table_name}")

    def load_attendance(self) -> Dict[str, bool]:
        """
        Read the recorded attendance flags.

        Returns:
            Dictionary mapping event uid to attended flag; rows without a
            uid are not included
        """
        attendance = {
            item['uid']: bool(item.get('attended', False))
            for item in self._scan_items()
            if item.get('record_type') == EVENT_RECORD and item.get('uid')
        }
        logger.info(f"Loaded attendance for {len(attendance)} events")
        return attendance

    def load_events(self) -> List[CalendarEvent]:
        """
        Read the stored event rows in display order.

        Returns:
            List of CalendarEvent objects with their attended flags
        """
        items = [
            item for item in self._scan_items()
            if item.get('record_type') == EVENT_RECORD
        ]
        items.sort(key=lambda item: int(item.get('position', 0)))

        events = []
        for item in items:
            event = self._item_to_event(item)
            if event:
                events.append(event)

        logger.info(f"Loaded {len(events)} stored events")
        return events

    def save_table(
        self,
        events: List[CalendarEvent],
        statistics: AttendanceStatistics
    ) -> SaveResult:
        """
        Replace the table contents with the given events and statistics.

        Every current row is written before stale rows are deleted, so an
        interrupted save never loses a recorded attendance flag.

        Args:
            events: Reconciled events in display order
            statistics: Statistics computed over the events

        Returns:
            SaveResult with counts of written and deleted rows
        """
        existing_ids = {item['row_id'] for item in self._scan_items()}

        items = []
        seen_ids = set()
        for position, event in enumerate(events):
            item = self._event_to_item(event, position)
            if item['row_id'] in seen_ids:
                # Repeated UIDs (e.g. recurrence overrides) still get their own row
                item['row_id'] = f"{item['row_id']}#{position}"
            seen_ids.add(item['row_id'])
            items.append(item)
        items.append(self._statistics_to_item(statistics))

        written = self.batch_write_items(items)

        current_ids = {item['row_id'] for item in items}
        stale_ids = sorted(existing_ids - current_ids)
        deleted = self.batch_delete_rows(stale_ids)

        logger.info(f"Saved attendance table: {written} written, {deleted} deleted")
        return SaveResult(written=written, deleted=deleted)

    def set_attended(self, uid: str, attended: bool) -> None:
        """
        Record the attended flag for every row of one event.

        Repeated UIDs are stored as several rows; all of them are updated so
        the next refresh reads a single consistent flag.

        Args:
            uid: Event uid
            attended: New flag value

        Raises:
            KeyError: If no event row exists for the uid
        """
        row_ids = [
            item['row_id'] for item in self._scan_items()
            if item.get('record_type') == EVENT_RECORD and item.get('uid') == uid
        ]
        if not uid or not row_ids:
            raise KeyError(uid)

        for row_id in row_ids:
            try:
                self.table.update_item(
                    Key={'row_id': row_id},
                    UpdateExpression='SET attended = :attended',
                    ConditionExpression='attribute_exists(row_id)',
                    ExpressionAttributeValues={':attended': attended}
                )
            except ClientError as e:
                logger.error(f"Error updating attendance for {uid} (row {row_id}): {e}")
                raise
        logger.info(f"Set attended={attended} for event {uid} ({len(row_ids)} rows)")

    def save_statistics(self, statistics: AttendanceStatistics) -> None:
        """
        Replace only the statistics row, leaving event rows untouched.

        Args:
            statistics: Freshly computed statistics
        """
        self.batch_write_items([self._statistics_to_item(statistics)])
        logger.info("Saved statistics row")

    def batch_write_items(self, items: List[dict]) -> int:
        """
        Write items to DynamoDB in batches of 25.

        Args:
            items: DynamoDB items to put

        Returns:
            Count of written items
        """
        if not items:
            return 0

        written = 0
        for i in range(0, len(items), self.BATCH_SIZE):
            batch = items[i:i + self.BATCH_SIZE]
            try:
                with self.table.batch_writer() as writer:
                    for item in batch:
                        writer.put_item(Item=item)
                        written += 1
            except ClientError as e:
                logger.error(f"Error writing batch {i // self.BATCH_SIZE + 1}: {e}")
                raise

        return written

    def batch_delete_rows(self, row_ids: List[str]) -> int:
        """
        Delete rows from DynamoDB in batches of 25.

        Args:
            row_ids: Row keys to delete

        Returns:
            Count of deleted rows
        """
        if not row_ids:
            return 0

        deleted = 0
        for i in range(0, len(row_ids), self.BATCH_SIZE):
            batch = row_ids[i:i + self.BATCH_SIZE]
            try:
                with self.table.batch_writer() as writer:
                    for row_id in batch:
                        writer.delete_item(Key={'row_id': row_id})
                        deleted += 1
            except ClientError as e:
                logger.error(f"Error deleting batch {i // self.BATCH_SIZE + 1}: {e}")
                raise

        return deleted

    def generate_row_id(self, event: CalendarEvent) -> str:
        """
        Key for an event row: its uid, or a hash for events without one.

        Args:
            event: CalendarEvent to key

        Returns:
            Row identifier
        """
        if event.uid:
            return event.uid

        start = event.start_date.isoformat() if event.start_date else ''
        composite = f"{event.summary}|{start}|{event.location or ''}"
        return 'nouid-' + hashlib.sha256(composite.encode('utf-8')).hexdigest()

    def _scan_items(self) -> List[dict]:
        try:
            response = self.table.scan()
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))

            return items

        except ClientError as e:
            logger.error(f"Error scanning DynamoDB table: {e}")
            raise

    def _event_to_item(self, event: CalendarEvent, position: int) -> dict:
        item = {
            'row_id': self.generate_row_id(event),
            'record_type': EVENT_RECORD,
            'position': position,
            'uid': event.uid,
            'summary': event.summary,
            'course_name': event.course_name,
            'event_type': event.event_type,
            'lecturers': event.lecturers,
            'attended': event.attended
        }

        # Absent optional fields are left out of the item
        optional = {
            'start_date': _format_date(event.start_date),
            'end_date': _format_date(event.end_date),
            'location': event.location,
            'description': event.description,
            'category': event.category
        }
        item.update({key: value for key, value in optional.items() if value is not None})
        return item

    def _item_to_event(self, item: dict) -> Optional[CalendarEvent]:
        try:
            return CalendarEvent(
                uid=item.get('uid', ''),
                summary=item['summary'],
                course_name=item['course_name'],
                event_type=item['event_type'],
                start_date=_parse_date(item.get('start_date')),
                end_date=_parse_date(item.get('end_date')),
                location=item.get('location'),
                description=item.get('description'),
                lecturers=item['lecturers'],
                category=item.get('category'),
                attended=bool(item.get('attended', False))
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to convert item {item.get('row_id')} to CalendarEvent: {e}")
            return None

    def _statistics_to_item(self, statistics: AttendanceStatistics) -> dict:
        item = {'row_id': STATISTICS_ROW_ID, 'record_type': STATISTICS_RECORD}
        for key, value in statistics.to_dict().items():
            if isinstance(value, float):
                value = Decimal(str(value))
            item[key] = value
        return item


def _format_date(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
