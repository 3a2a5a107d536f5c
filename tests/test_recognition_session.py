from __future__ import annotations

import pytest

from calling.errors import AlreadyRunningError, ConfigError, RecognitionCanceledError
from speech.recognition import InvalidTransitionError, RecognitionSession, RecognitionState


def _start(engine, call_id: str = "c1"):
    transcripts: list = []
    errors: list[RecognitionCanceledError] = []
    session = RecognitionSession(engine, call_id, stop_timeout=0.5)
    session.start(transcripts.append, errors.append)
    return session, transcripts, errors


def test_start_runs_and_second_start_is_rejected(fake_engine) -> None:
    session, _, _ = _start(fake_engine)

    assert session.state is RecognitionState.RUNNING
    assert fake_engine.recognizers[0].started is True

    with pytest.raises(AlreadyRunningError):
        session.start(lambda event: None)
    assert session.state is RecognitionState.RUNNING


def test_write_forwards_while_running(fake_engine) -> None:
    session, _, _ = _start(fake_engine)

    assert session.write(b"\x01\x02") is True
    assert session.write(b"") is False

    assert fake_engine.recognizers[0].chunks == [b"\x01\x02"]
    assert session.bytes_written == 2


def test_write_before_start_and_after_stop_is_a_noop(fake_engine) -> None:
    session = RecognitionSession(fake_engine, "c1")
    assert session.write(b"early") is False

    session.start(lambda event: None)
    session.stop()

    assert session.state is RecognitionState.STOPPED
    assert session.write(b"late") is False
    assert fake_engine.recognizers[0].chunks == []


def test_stop_closes_input_and_releases_once(fake_engine) -> None:
    session, _, _ = _start(fake_engine)
    recognizer = fake_engine.recognizers[0]

    session.stop()
    session.stop()

    assert recognizer.input_closed is True
    assert recognizer.stop_requested is True
    assert recognizer.close_calls == 1
    assert session.state is RecognitionState.STOPPED


def test_stop_on_idle_session_is_a_noop(fake_engine) -> None:
    session = RecognitionSession(fake_engine, "c1")

    session.stop()

    assert session.state is RecognitionState.IDLE


def test_only_final_results_are_delivered(fake_engine) -> None:
    session, transcripts, _ = _start(fake_engine)

    session.handle_recognizing("hel")
    session.handle_recognized("hello")
    session.handle_recognized("")
    session.handle_no_match()

    assert [event.text for event in transcripts] == ["hello"]
    assert transcripts[0].is_final is True
    assert transcripts[0].call_id == "c1"


def test_results_after_stop_are_discarded(fake_engine) -> None:
    session, transcripts, _ = _start(fake_engine)
    session.stop()

    session.handle_recognized("too late")

    assert transcripts == []


def test_failing_transcript_callback_does_not_break_session(fake_engine) -> None:
    def boom(event) -> None:
        raise RuntimeError("consumer failed")

    session = RecognitionSession(fake_engine, "c1")
    session.start(boom)

    session.handle_recognized("hello")

    assert session.state is RecognitionState.RUNNING


def test_cancel_mid_session_reports_error_exactly_once(fake_engine) -> None:
    session, _, errors = _start(fake_engine)
    recognizer = fake_engine.recognizers[0]

    session.handle_canceled("Error", "connection lost")
    session.handle_canceled("Error", "connection lost again")
    session.stop()

    assert session.state is RecognitionState.CANCELED
    assert len(errors) == 1
    assert errors[0].reason == "Error"
    assert "connection lost" in errors[0].detail
    assert recognizer.close_calls == 1
    assert recognizer.stop_requested is False
    assert session.write(b"after cancel") is False


def test_engine_start_failure_cancels_and_reports(fake_engine) -> None:
    fake_engine.start_error = RuntimeError("socket refused")

    session, _, errors = _start(fake_engine)

    assert session.state is RecognitionState.CANCELED
    assert len(errors) == 1
    assert "socket refused" in errors[0].detail
    assert fake_engine.recognizers[0].close_calls == 1

    session.stop()
    assert session.state is RecognitionState.CANCELED


def test_missing_configuration_raises_without_error_callback(fake_engine) -> None:
    fake_engine.open_error = ConfigError("Speech service key and region must be configured.")
    errors: list = []
    session = RecognitionSession(fake_engine, "c1")

    with pytest.raises(ConfigError):
        session.start(lambda event: None, errors.append)

    assert session.state is RecognitionState.CANCELED
    assert errors == []


def test_engine_ending_session_on_its_own_moves_to_stopped(fake_engine) -> None:
    session, _, errors = _start(fake_engine)

    session.handle_session_stopped()

    assert session.state is RecognitionState.STOPPED
    assert errors == []
    assert fake_engine.recognizers[0].close_calls == 1


def test_stop_does_not_wait_forever_for_engine(fake_engine) -> None:
    session, _, _ = _start(fake_engine)
    recognizer = fake_engine.recognizers[0]
    # Engine never confirms shutdown.
    recognizer.request_stop = lambda: None

    session.stop()

    assert session.state is RecognitionState.STOPPED


def test_invalid_transition_is_rejected(fake_engine) -> None:
    session = RecognitionSession(fake_engine, "c1")

    with pytest.raises(InvalidTransitionError):
        with session._lock:
            session._transition(RecognitionState.RUNNING)


def test_cancel_on_idle_session_is_ignored(fake_engine) -> None:
    errors: list = []
    session = RecognitionSession(fake_engine, "c1")

    session.handle_canceled("Error", "late event")

    assert session.state is RecognitionState.IDLE
    assert errors == []
    session.start(lambda event: None, errors.append)
    assert session.state is RecognitionState.RUNNING


def test_cancel_after_stop_is_ignored(fake_engine) -> None:
    session, _, errors = _start(fake_engine)
    session.stop()

    session.handle_canceled("Error", "late event")

    assert session.state is RecognitionState.STOPPED
    assert errors == []
    assert fake_engine.recognizers[0].close_calls == 1


def test_cancel_racing_stop_counts_as_shutdown(fake_engine) -> None:
    session, _, errors = _start(fake_engine)
    recognizer = fake_engine.recognizers[0]
    recognizer.request_stop = lambda: session.handle_canceled("EndOfStream", "input closed")

    session.stop()

    assert session.state is RecognitionState.STOPPED
    assert errors == []
    assert recognizer.close_calls == 1
