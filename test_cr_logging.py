import json
import logging

from cr_utils.cr_logging import (
    NOOP_LOGGER,
    RunRecordFormatter,
    emit_run_record,
    ensure_run_logger,
    get_logger,
    run_record,
)


def make_record(msg, args=()):
    return logging.LogRecord("CodeRunnerRunLog", logging.INFO, __file__, 1, msg, args, None)


class TestRunRecordFormatter:
    def test_mapping_message_is_written_as_json(self):
        line = RunRecordFormatter().format(make_record({"sequence": 3, "outcome": "RunSuccess"}))
        prefix, level, payload = line.split(" - ", 2)
        assert level == "INFO"
        assert json.loads(payload) == {"sequence": 3, "outcome": "RunSuccess"}

    def test_unserializable_values_do_not_raise(self):
        line = RunRecordFormatter().format(make_record({"value": object()}))
        assert json.loads(line.split(" - ", 2)[2])["value"].startswith("<object object")

    def test_plain_messages_are_left_alone(self):
        line = RunRecordFormatter().format(make_record("run %s done", (7,)))
        assert line.endswith(" - INFO - run 7 done")

    def test_original_record_is_not_mutated(self):
        record = make_record({"sequence": 1})
        RunRecordFormatter().format(record)
        assert record.msg == {"sequence": 1}


class TestRunRecord:
    def test_fault_keeps_first_line_only(self):
        record = run_record(5, "RunFault", 0.123456, runner_exception="ValueError: x\n  File ...")
        assert record == {
            "sequence": 5,
            "outcome": "RunFault",
            "duration_s": 0.1235,
            "output_lines": 0,
            "runner_exception": "ValueError: x",
        }

    def test_success_counts_output_lines(self):
        record = run_record(1, "RunSuccess", 0.0, output=["a", "b", ""])
        assert record["output_lines"] == 3
        assert record["runner_exception"] is None


def test_disabled_logging_is_a_noop():
    assert get_logger(False, "CodeRunner") is NOOP_LOGGER
    assert ensure_run_logger(False, "unused.log") is NOOP_LOGGER
    emit_run_record(NOOP_LOGGER, run_record(1, "RunSuccess", 0.0))


def test_run_logger_writes_json_lines(tmp_path):
    log_file = tmp_path / "runs.log"
    logger = ensure_run_logger(True, str(log_file), logger_name="CodeRunnerRunLogTest")
    try:
        emit_run_record(logger, run_record(9, "RunSuccess", 0.5, output=["hi", ""]))
        ensure_run_logger(True, str(log_file), logger_name="CodeRunnerRunLogTest")
        assert len(logger.handlers) == 1
        for handler in logger.handlers:
            handler.flush()
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
    payload = log_file.read_text(encoding="utf-8").strip().split(" - ", 2)[2]
    assert json.loads(payload)["sequence"] == 9
    assert logger.propagate is False
