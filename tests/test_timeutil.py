import pytest

from terrafarm.utils.timeutil import parse_duration, pretty_duration

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


class TestParseDuration:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("300", 300),
            ("5s", 5),
            ("90m", 5400),
            ("3h", 10800),
            ("1h30m", 5400),
            ("2d", 172800),
            ("1w2d3h4m5s", 604800 + 172800 + 10800 + 240 + 5),
            ("1H", 3600),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "  ", "abc", "1x", "h", "3h 1w"])
    def test_invalid(self, value):
        with pytest.raises(ValueError, match="Invalid duration"):
            parse_duration(value)


class TestPrettyDuration:
    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [
            (0, "< 1 second"),
            (-10, "< 1 second"),
            (1, "1 second"),
            (60, "1 minute"),
            (7260, "2 hours 1 minute"),
            (90061, "1 day 1 hour 1 minute 1 second"),
        ],
    )
    def test_format(self, seconds, expected):
        assert pretty_duration(seconds) == expected
