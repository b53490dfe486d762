# tests/test_telemetry.py
"""Tests for inbound telemetry parsing.

Parsers never raise: bad payloads are logged and leave the state alone.
"""

import json
import logging

import telemetry

STATE_PAYLOAD = json.dumps({
    "Time": "2021-10-17T17:26:43",
    "Uptime": "16T22:35:15",
    "UptimeSec": 1463715,
    "Heap": 27,
    "SleepMode": "Dynamic",
    "POWER1": "ON",
    "POWER2": "OFF",
    "Dimmer": 100,
    "Color": "FF2A00",
    "Wifi": {"AP": 1, "RSSI": 100},
})


class TestPower:
    """stat/POWER1 and stat/POWER2."""

    def test_power1_sets_diffuser(self, state):
        telemetry.parse_power1(state, "ON")
        assert state.oper.diffuser_on

    def test_power_off_resets_on_time(self, state):
        state.oper.light_on = True
        state.oper.light_on_secs = 30
        telemetry.parse_power2(state, "OFF")
        assert not state.oper.light_on
        assert state.oper.light_on_secs == 0


class TestStructuredState:
    """tele/STATE and stat/STATUS11."""

    def test_flat_state(self, state):
        telemetry.parse_state(state, STATE_PAYLOAD)

        oper = state.oper
        assert oper.diffuser_on
        assert not oper.light_on
        assert oper.light_color == 0xff2a00
        assert oper.light_dim == 100
        assert oper.heap == 27
        assert oper.uptime == "2 weeks 2 days 22 hours 35 minutes 15 seconds"
        assert oper.raw == STATE_PAYLOAD
        assert oper.last_receive_ts
        assert state.stats.parse_state_msgs == 1

    def test_nested_status11(self, state):
        payload = json.dumps({"StatusSTS": json.loads(STATE_PAYLOAD)})
        telemetry.parse_status11(state, payload)
        assert state.oper.diffuser_on
        assert state.oper.light_color == 0xff2a00
        assert state.stats.parse_state_msgs == 1

    def test_empty_power_field_is_dropped(self, state, caplog):
        payload = json.dumps({"POWER1": "", "POWER2": "ON", "Color": "FF0000"})
        with caplog.at_level(logging.ERROR):
            telemetry.parse_state(state, payload)
        assert not state.oper.light_on
        assert state.stats.parse_state_msgs == 0
        assert "Ignoring unexpected operstate" in caplog.text

    def test_missing_status_sts_is_dropped(self, state):
        telemetry.parse_status11(state, json.dumps({"Status": {}}))
        assert state.stats.parse_state_msgs == 0

    def test_invalid_json_is_logged(self, state, caplog):
        with caplog.at_level(logging.ERROR):
            telemetry.parse_state(state, "not json")
        assert state.stats.parse_state_msgs == 0
        assert caplog.records

    def test_bad_color_keeps_rest(self, state, caplog):
        state.oper.light_color = 0x123456
        payload = json.dumps({"POWER1": "OFF", "POWER2": "ON", "Color": "zz", "Dimmer": 7})
        with caplog.at_level(logging.ERROR):
            telemetry.parse_state(state, payload)
        assert state.oper.light_on
        assert state.oper.light_color == 0x123456
        assert state.oper.light_dim == 7
        assert state.stats.parse_state_msgs == 1
        assert "Color parsing" in caplog.text


class TestWaterLevel:
    """stat/error low-water reports."""

    def test_low_water_forces_diffuser_off(self, state, caplog):
        state.wanted.diffuser_on = True
        with caplog.at_level(logging.WARNING):
            telemetry.parse_error(state, "Ox81")

        assert state.oper.low_water
        assert not state.wanted.diffuser_on
        assert "Unexpected error value" in caplog.text
        assert "low in water" in caplog.text

    def test_only_transitions_act(self, state, caplog):
        with caplog.at_level(logging.WARNING):
            telemetry.parse_error(state, "0x1")
            state.wanted.diffuser_on = True
            telemetry.parse_error(state, "0x1")

        # Repeated report is ignored, so the user's request stands
        assert state.wanted.diffuser_on
        assert caplog.text.count("low in water") == 1

    def test_recovery(self, state, caplog):
        telemetry.parse_error(state, "0x1")
        with caplog.at_level(logging.INFO):
            telemetry.parse_error(state, "0x0")
        assert not state.oper.low_water
        assert "has water now" in caplog.text

    def test_unparseable_error_payload(self, state, caplog):
        with caplog.at_level(logging.ERROR):
            telemetry.parse_error(state, "0xqq")
        assert not state.oper.low_water
        assert "Conversion failed" in caplog.text
