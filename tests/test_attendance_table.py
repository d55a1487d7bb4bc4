"""Unit tests for the DynamoDB attendance table."""
from datetime import datetime, timezone

import boto3
import pytest
from moto import mock_aws

from lambda_function import recompute_statistics
from processor.attendance import compute_statistics
from processor.config import AttendanceConfig
from processor.models import CalendarEvent
from storage.attendance_table import STATISTICS_ROW_ID, AttendanceTableManager

NOW = datetime(2024, 6, 1, 12, tzinfo=timezone.utc)


@pytest.fixture
def dynamodb_table(monkeypatch):
    """Create a mock DynamoDB table for testing."""
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')

        table = dynamodb.create_table(
            TableName='test-attendance',
            KeySchema=[
                {'AttributeName': 'row_id', 'KeyType': 'HASH'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'row_id', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield table


@pytest.fixture
def table_manager(dynamodb_table):
    """Create AttendanceTableManager instance with mock table."""
    return AttendanceTableManager('test-attendance')


def make_event(uid, day, attended=False, event_type='Lecture', **kwargs):
    """Create a CalendarEvent on the given day of January 2024."""
    return CalendarEvent(
        uid=uid,
        summary=f'Course {uid} [{event_type}]',
        course_name=f'Course {uid}',
        event_type=event_type,
        start_date=datetime(2024, 1, day, 9, tzinfo=timezone.utc),
        attended=attended,
        **kwargs
    )


def stats_for(events):
    return compute_statistics(events, NOW, frozenset(), 0.75)


def test_load_attendance_empty_table(table_manager):
    """Test load_attendance returns empty dict for empty table."""
    assert table_manager.load_attendance() == {}


def test_save_and_load_attendance(table_manager):
    """Test attended flags survive a save."""
    events = [make_event('a', 1, attended=True), make_event('b', 2)]

    result = table_manager.save_table(events, stats_for(events))

    assert result.written == 3  # two events plus the statistics row
    assert result.deleted == 0
    assert table_manager.load_attendance() == {'a': True, 'b': False}


def test_load_events_round_trip(table_manager):
    """Test stored rows come back as equal CalendarEvents in order."""
    events = [
        make_event(
            'b', 5,
            end_date=datetime(2024, 1, 5, 10, 30, tzinfo=timezone.utc),
            location='Room 101',
            description='Lecturers: Dr A Event type: Lecture',
            lecturers='Dr A',
            category='Maths'
        ),
        make_event('a', 7, attended=True),
    ]

    table_manager.save_table(events, stats_for(events))
    loaded = table_manager.load_events()

    assert loaded == events


def test_save_table_removes_stale_rows(table_manager):
    """Test rows for events no longer in the feed are deleted."""
    first = [make_event('a', 1, attended=True), make_event('b', 2, attended=True)]
    table_manager.save_table(first, stats_for(first))

    second = [make_event('b', 2, attended=True)]
    result = table_manager.save_table(second, stats_for(second))

    assert result.deleted == 1
    assert table_manager.load_attendance() == {'b': True}


def test_save_table_writes_statistics_row(table_manager, dynamodb_table):
    """Test the statistics row is stored and ignored as an event."""
    events = [make_event('a', 1, attended=True)]

    table_manager.save_table(events, stats_for(events))

    item = dynamodb_table.get_item(Key={'row_id': STATISTICS_ROW_ID})['Item']
    assert item['record_type'] == 'statistics'
    assert item['total_events'] == 1
    assert item['target_status'] == 'met'
    assert len(table_manager.load_events()) == 1


def test_events_without_uid_stored_but_not_in_attendance(table_manager):
    """Test events lacking a uid get a generated row key."""
    events = [make_event('', 1, attended=True), make_event('', 2)]

    table_manager.save_table(events, stats_for(events))

    assert table_manager.load_attendance() == {}
    loaded = table_manager.load_events()
    assert len(loaded) == 2
    assert loaded[0].attended is True


def test_duplicate_uids_keep_separate_rows(table_manager):
    """Test repeated uids do not overwrite each other."""
    events = [make_event('same', 1), make_event('same', 8)]

    table_manager.save_table(events, stats_for(events))

    assert len(table_manager.load_events()) == 2


def test_large_table_batches(table_manager):
    """Test saving more than 25 rows (batch limit)."""
    events = [make_event(f'evt-{i}', (i % 28) + 1) for i in range(30)]

    result = table_manager.save_table(events, stats_for(events))

    assert result.written == 31
    assert len(table_manager.load_events()) == 30


def test_set_attended(table_manager):
    """Test recording attendance for a stored event."""
    events = [make_event('a', 1)]
    table_manager.save_table(events, stats_for(events))

    table_manager.set_attended('a', True)

    assert table_manager.load_attendance() == {'a': True}


def test_set_attended_unknown_uid(table_manager):
    """Test set_attended refuses to create rows."""
    with pytest.raises(KeyError):
        table_manager.set_attended('missing', True)

    assert table_manager.load_events() == []


def test_generate_row_id_consistency(table_manager):
    """Test generated row ids are stable for uid-less events."""
    event = make_event('', 3, location='Hall')

    row_id_1 = table_manager.generate_row_id(event)
    row_id_2 = table_manager.generate_row_id(make_event('', 3, location='Hall'))

    assert row_id_1 == row_id_2
    assert row_id_1.startswith('nouid-')
    assert table_manager.generate_row_id(make_event('', 4, location='Hall')) != row_id_1
    assert table_manager.generate_row_id(make_event('uid-1', 3)) == 'uid-1'


def test_set_attended_updates_every_row_of_repeated_uid(table_manager):
    """Test a check-off on a repeated uid survives the next refresh."""
    events = [make_event('X', 1), make_event('X', 2)]
    table_manager.save_table(events, stats_for(events))

    table_manager.set_attended('X', True)

    assert table_manager.load_attendance() == {'X': True}
    assert [e.attended for e in table_manager.load_events()] == [True, True]


def test_save_statistics_leaves_event_rows(table_manager, dynamodb_table):
    """Test save_statistics rewrites only the statistics row."""
    events = [make_event('a', 1, attended=True)]
    table_manager.save_table(events, stats_for(events))

    table_manager.save_statistics(stats_for([]))

    item = dynamodb_table.get_item(Key={'row_id': STATISTICS_ROW_ID})['Item']
    assert item['total_events'] == 0
    assert table_manager.load_attendance() == {'a': True}


def test_recompute_keeps_rows_that_cannot_be_converted(table_manager, dynamodb_table):
    """Test a partial row and its attendance flag survive a recompute."""
    events = [make_event('a', 1, attended=True)]
    table_manager.save_table(events, stats_for(events))
    dynamodb_table.put_item(Item={
        'row_id': 'partial',
        'record_type': 'event',
        'position': 1,
        'uid': 'partial',
        'summary': 'Hand-edited row',
        'attended': True
    })

    statistics = recompute_statistics(AttendanceConfig(now=NOW), table_manager)

    assert statistics.total_events == 1
    assert 'Item' in dynamodb_table.get_item(Key={'row_id': 'partial'})
    assert table_manager.load_attendance() == {'a': True, 'partial': True}
