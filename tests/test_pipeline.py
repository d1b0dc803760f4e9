"""
Tests for the per-connection control loop and its error policy.
"""

import json
import logging
import math

import pytest

from mpc_control.config import MAX_STEERING_ANGLE_RAD
from mpc_control.errors import SolverFailure
from mpc_control.pipeline import ControlLoop
from mpc_control.protocol import TelemetryFrame

from stubs import StubSolver


class ListRecorder:
    def __init__(self):
        self.records = []

    def log_cycle(self, record):
        self.records.append(record)


def _frame(name, data):
    return "42" + json.dumps([name, data])


def _decode(reply):
    name, data = json.loads(reply.text[2:])
    return name, data


class TestProcessTelemetry:
    def test_straight_road_state(self, telemetry_data, stub_solver):
        loop = ControlLoop(stub_solver)

        loop.process_telemetry(TelemetryFrame.from_payload(telemetry_data))

        state, coeffs = stub_solver.calls[0]
        assert (state.x, state.y, state.psi) == (0.0, 0.0, 0.0)
        assert state.v == 20.0
        assert state.cte == pytest.approx(0.0, abs=1e-9)
        assert state.epsi == pytest.approx(0.0, abs=1e-9)
        assert len(coeffs) == 4

    def test_outbound_message_contents(self, telemetry_data):
        solver = StubSolver(result=[0.1, 0.5, 1.0, 0.1, 2.0, 0.2, 3.0, 0.3])
        loop = ControlLoop(solver)

        message = loop.process_telemetry(TelemetryFrame.from_payload(telemetry_data))

        assert message.command.steering == pytest.approx(-0.1 / MAX_STEERING_ANGLE_RAD)
        assert message.command.throttle == 0.5
        assert message.mpc_x == [1.0, 2.0, 3.0]
        assert message.mpc_y == [0.1, 0.2, 0.3]
        assert message.next_x == pytest.approx(telemetry_data["ptsx"])
        assert message.next_y == pytest.approx(telemetry_data["ptsy"])

    def test_reference_path_in_vehicle_frame(self, telemetry_data, stub_solver):
        telemetry_data.update(x=5.0, y=2.0, psi=math.pi)
        loop = ControlLoop(stub_solver)

        message = loop.process_telemetry(TelemetryFrame.from_payload(telemetry_data))

        # Facing -x from (5, 2): waypoints are behind and to the right
        assert message.next_x[0] == pytest.approx(-5.0)
        assert message.next_y[0] == pytest.approx(2.0)

    def test_solver_failure_gives_neutral_command(self, telemetry_data):
        loop = ControlLoop(StubSolver(error=SolverFailure("infeasible")))

        message = loop.process_telemetry(TelemetryFrame.from_payload(telemetry_data))

        assert message.command.steering == 0.0
        assert message.command.throttle == 0.0
        assert message.mpc_x == [] and message.mpc_y == []
        assert len(message.next_x) == len(telemetry_data["ptsx"])


class TestHandleMessage:
    def test_telemetry_gets_delayed_steer_reply(self, telemetry_data, stub_solver):
        reply = ControlLoop(stub_solver).handle_message(_frame("telemetry", telemetry_data))

        name, data = _decode(reply)
        assert reply.actuation is True
        assert name == "steer"
        assert set(data) == {"steering_angle", "throttle", "mpc_x", "mpc_y", "next_x", "next_y"}
        assert len(data["mpc_x"]) == len(data["mpc_y"])

    @pytest.mark.parametrize("frame", ["42", '42["telemetry",null]', "42garbage"])
    def test_manual_fallback_without_solving(self, frame, stub_solver):
        reply = ControlLoop(stub_solver).handle_message(frame)

        assert reply.text == '42["manual",{}]'
        assert reply.actuation is False
        assert stub_solver.calls == []

    def test_empty_frame_logged_at_debug(self, stub_solver, caplog):
        with caplog.at_level(logging.DEBUG):
            ControlLoop(stub_solver).handle_message('42["telemetry",null]')

        assert caplog.records
        assert all(r.levelno == logging.DEBUG for r in caplog.records)

    @pytest.mark.parametrize("frame", ["42garbage", '42["telemetry",{"x":'])
    def test_malformed_frame_logged_at_warning(self, frame, stub_solver, caplog):
        with caplog.at_level(logging.DEBUG):
            reply = ControlLoop(stub_solver).handle_message(frame)

        assert reply.text == '42["manual",{}]'
        assert any(r.levelno == logging.WARNING and "Malformed frame" in r.getMessage() for r in caplog.records)

    def test_invalid_telemetry_fields_fall_back_to_manual(self, telemetry_data, stub_solver):
        del telemetry_data["psi"]
        reply = ControlLoop(stub_solver).handle_message(_frame("telemetry", telemetry_data))

        assert reply.text == '42["manual",{}]'
        assert stub_solver.calls == []

    def test_no_marker_gets_no_reply(self, stub_solver):
        assert ControlLoop(stub_solver).handle_message("2ping") is None

    def test_other_events_get_no_reply(self, stub_solver):
        assert ControlLoop(stub_solver).handle_message(_frame("reset", {"a": 1})) is None
        assert stub_solver.calls == []

    def test_too_few_waypoints_skips_solver(self, telemetry_data, stub_solver):
        telemetry_data["ptsx"] = [10.0, 20.0, 30.0]
        telemetry_data["ptsy"] = [0.0, 0.0, 0.0]

        reply = ControlLoop(stub_solver).handle_message(_frame("telemetry", telemetry_data))

        assert reply.text == '42["manual",{}]'
        assert stub_solver.calls == []

    def test_degenerate_waypoints_skip_solver(self, telemetry_data, stub_solver):
        telemetry_data["psi"] = math.pi / 2

        reply = ControlLoop(stub_solver).handle_message(_frame("telemetry", telemetry_data))

        assert reply.text == '42["manual",{}]'
        assert stub_solver.calls == []

    def test_solver_failure_replies_neutral_steer(self, telemetry_data):
        loop = ControlLoop(StubSolver(result=[0.1]))

        name, data = _decode(loop.handle_message(_frame("telemetry", telemetry_data)))

        assert name == "steer"
        assert data["steering_angle"] == 0.0
        assert data["throttle"] == 0.0

    def test_error_does_not_affect_next_cycle(self, telemetry_data, stub_solver):
        loop = ControlLoop(stub_solver)

        loop.handle_message('42["telemetry",null]')
        reply = loop.handle_message(_frame("telemetry", telemetry_data))

        assert _decode(reply)[0] == "steer"
        assert len(stub_solver.calls) == 1

    def test_unexpected_error_falls_back_to_manual(self, telemetry_data):
        class BrokenRecorder:
            def log_cycle(self, record):
                raise OSError("disk full")

        loop = ControlLoop(StubSolver(), recorder=BrokenRecorder())
        reply = loop.handle_message(_frame("telemetry", telemetry_data))

        assert reply.text == '42["manual",{}]'


class TestRecording:
    def test_records_outcomes(self, telemetry_data):
        recorder = ListRecorder()
        loop = ControlLoop(StubSolver(), recorder=recorder)

        loop.handle_message(_frame("telemetry", telemetry_data))
        telemetry_data["psi"] = math.pi / 2
        loop.handle_message(_frame("telemetry", telemetry_data))

        assert [r.outcome for r in recorder.records] == ["ok", "fit_error"]
        ok = recorder.records[0]
        assert ok.steering == pytest.approx(-0.1 / MAX_STEERING_ANGLE_RAD)
        assert ok.solve_ms >= 0.0
        assert math.isnan(recorder.records[1].cte)

    def test_records_solver_failure(self, telemetry_data):
        recorder = ListRecorder()
        loop = ControlLoop(StubSolver(error=RuntimeError("boom")), recorder=recorder)

        loop.handle_message(_frame("telemetry", telemetry_data))

        assert recorder.records[0].outcome == "solver_failure"
        assert recorder.records[0].cte == pytest.approx(0.0, abs=1e-9)
