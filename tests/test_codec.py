# tests/test_codec.py
"""Tests for payload decoding, color resolution and topic builders."""

import random

import pytest

from codec import (
    LightMode,
    Msg,
    Topics,
    color_to_int,
    first_n,
    format_color,
    parse_hex_suffix,
    parse_int32,
    parse_on,
    seconds_to_human,
)


class TestParsing:
    """Inbound payload decoding."""

    def test_parse_on_is_case_insensitive(self):
        assert parse_on("ON")
        assert parse_on("on")
        assert not parse_on("OFF")
        assert not parse_on("")

    @pytest.mark.parametrize("text,expected", [
        ("0x1", 1),
        ("Ox81", 0x81),
        ("FF2A00", 0xff2a00),
        ("#ff0000", 0xff0000),
        ("0", 0),
    ])
    def test_parse_hex_suffix(self, text, expected):
        assert parse_hex_suffix(text) == expected

    def test_parse_hex_suffix_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_hex_suffix("0xzz")
        with pytest.raises(ValueError):
            parse_hex_suffix("")

    @pytest.mark.parametrize("text,expected", [
        ("0", 0),
        ("42", 42),
        ("+7", 7),
        ("-3600", -3600),
        ("007", 7),
        ("2147483647", 2147483647),
        ("-2147483648", -2147483648),
    ])
    def test_parse_int32(self, text, expected):
        assert parse_int32(text) == expected

    @pytest.mark.parametrize("text", [
        "", " 5", "5 ", "1_0", "1.5", "0x10", "+", "2147483648", "-2147483649", "٥",
    ])
    def test_parse_int32_rejects(self, text):
        with pytest.raises(ValueError):
            parse_int32(text)


class TestColors:
    """Color name / number resolution."""

    def test_named_colors(self):
        assert color_to_int("red") == 0xff0000
        assert color_to_int("Gold") == 0xd4af37
        assert color_to_int("white") == 0xffffff

    @pytest.mark.parametrize("name", ["off", "out", "none", "black"])
    def test_off_names_are_zero(self, name):
        assert color_to_int(name) == 0

    def test_numbers_win_over_names(self):
        assert color_to_int("0x00ff00") == 0x00ff00
        assert color_to_int("255") == 255

    def test_random_fallback_uses_given_rng(self):
        first = color_to_int("no-such-color", random.Random(3))
        second = color_to_int("no-such-color", random.Random(3))
        assert first == second
        assert 0 <= first <= 0xffffff

    def test_out_of_range_number_falls_back_to_random(self):
        value = color_to_int(str(1 << 40), random.Random(1))
        assert 0 <= value <= 0xffffff

    def test_red_round_trip(self):
        """Published color decodes back to what was requested."""
        published = format_color(color_to_int("red"))
        assert published == "#ff0000"
        assert parse_hex_suffix(published) == 0xff0000

    def test_format_color_masks_to_rgb(self):
        assert format_color(0x1ff0000) == "#ff0000"
        assert format_color(0) == "#000000"


class TestLightMode:
    """Mode names and firmware codes."""

    @pytest.mark.parametrize("name,mode", [
        ("crazy", LightMode.CRAZY),
        ("SOLID", LightMode.SOLID),
        ("night", LightMode.NIGHT_MODE),
        ("su", LightMode.SUNSHINE),
    ])
    def test_from_name_uses_two_letter_prefix(self, name, mode):
        assert LightMode.from_name(name) is mode

    def test_from_name_too_short(self):
        with pytest.raises(ValueError, match="2 or more"):
            LightMode.from_name("s")

    def test_from_name_no_match(self):
        with pytest.raises(ValueError, match="No matches"):
            LightMode.from_name("disco")

    def test_sunshine_looks_like_solid_to_device(self):
        assert LightMode.SUNSHINE.code == LightMode.SOLID.code == 1
        assert LightMode.NIGHT_MODE.label == "night-mode"


class TestHumanReadable:
    """Uptime rendering."""

    def test_seconds_only(self):
        assert seconds_to_human(5) == "5 seconds"
        assert seconds_to_human(1) == "1 second"

    def test_zero_units_after_first_are_kept(self):
        assert seconds_to_human(2 * 86400 + 5 * 60 + 1) == "2 days 0 hour 5 minutes 1 second"

    def test_minutes(self):
        assert seconds_to_human(61) == "1 minute 1 second"

    def test_first_n(self):
        assert first_n("abcdef", 3) == "abc"
        assert first_n("ab", 10) == "ab"


class TestTopics:
    """Outbound message builders."""

    def test_subscriptions_use_prefix(self):
        topics = Topics("den/smokey/")
        assert topics.subscriptions() == [
            "den/smokey/stat/POWER1",
            "den/smokey/stat/POWER2",
            "den/smokey/stat/error",
            "den/smokey/stat/STATUS11",
            "den/smokey/tele/STATE",
        ]

    def test_command_payloads(self):
        topics = Topics("smokey/")
        assert topics.check_status() == Msg("smokey/cmnd/Status", "11")
        assert topics.check_water() == Msg("smokey/cmnd/TuyaSend8", "")
        assert topics.set_diffuser(True) == Msg("smokey/cmnd/Power1", "ON")
        assert topics.set_light(False) == Msg("smokey/cmnd/Power2", "OFF")
        assert topics.set_light_mode(LightMode.SUNSHINE) == Msg("smokey/cmnd/TuyaEnum2", "1")
        assert topics.set_light_dim(42) == Msg("smokey/cmnd/Dimmer0", "42")
        assert topics.set_light_color(0xff0000) == Msg("smokey/cmnd/Color1", "#ff0000")
