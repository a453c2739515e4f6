import json

import pytest

from boardsync.logging import StructuredLogger, configure_logging, get_logger


def test_structured_logger_json_format(capsys):
    """Test that structured logger produces JSON output when configured."""
    logger = StructuredLogger(name='test', json_logging=True, level='INFO')
    logger.log_operation('test_operation', param1='value1', param2=42)

    captured = capsys.readouterr()
    log_lines = [line for line in captured.out.strip().split('\n') if line]

    assert len(log_lines) == 1
    log_data = json.loads(log_lines[0])

    assert log_data['level'] == 'INFO'
    assert log_data['operation'] == 'test_operation'
    assert log_data['param1'] == 'value1'
    assert log_data['param2'] == 42
    assert 'timestamp' in log_data


def test_structured_logger_regular_format(capsys):
    logger = StructuredLogger(name='test', json_logging=False, level='INFO')
    logger.log_operation('test_operation', param1='value1')

    captured = capsys.readouterr()
    assert 'Operation: test_operation' in captured.out
    assert 'INFO' in captured.out


def test_card_action_message_and_fields(capsys):
    logger = StructuredLogger(name='test', json_logging=True, level='INFO')
    logger.log_card_action('move', rule_name='closed_issue', column_id=31, card_id=3, rule_value=True)

    log_data = json.loads(capsys.readouterr().out.strip())
    assert log_data['operation'] == 'card_move'
    assert log_data['rule_name'] == 'closed_issue'
    assert log_data['column_id'] == 31
    assert log_data['card_id'] == 3
    assert log_data['message'] == 'move card 3 in column 31 because of "closed_issue" and value: "True"'


def test_card_create_mentions_content(capsys):
    logger = StructuredLogger(name='test', json_logging=True, level='INFO')
    logger.log_card_action('create', rule_name='new_issue', column_id=11, content_url='https://x/issues/1')

    log_data = json.loads(capsys.readouterr().out.strip())
    assert 'card_id' not in log_data
    assert log_data['content_url'] == 'https://x/issues/1'


def test_json_logger_dedupes_identical_consecutive_entries(capsys):
    logger = StructuredLogger(name='test', json_logging=True, level='INFO')
    logger.log_operation('same', n=1)
    logger.log_operation('same', n=1)
    logger.log_operation('same', n=2)

    lines = [line for line in capsys.readouterr().out.splitlines() if line]
    assert len(lines) == 2


def test_timed_operation_logs_failure(capsys):
    logger = StructuredLogger(name='test', json_logging=True, level='INFO')
    with pytest.raises(ValueError):
        with logger.timed_operation('handle_event', event='issues.closed'):
            raise ValueError('boom')

    entries = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line]
    assert entries[0]['operation'] == 'handle_event_start'
    assert entries[-1]['error'] == 'boom'
    assert entries[-1]['level'] == 'ERROR'


def test_timed_operation_reports_duration(capsys):
    logger = StructuredLogger(name='test', json_logging=True, level='INFO')
    with logger.timed_operation('handle_event'):
        pass

    entries = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line]
    assert 'duration_ms' in entries[-1]


def test_configure_logging_replaces_global():
    first = configure_logging(level='DEBUG')
    assert get_logger() is first
    second = configure_logging(json_logging=True)
    assert get_logger() is second
