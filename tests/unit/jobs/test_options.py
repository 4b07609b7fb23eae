"""Tests for submission option validation."""

import pytest

from mediashrink.jobs.exceptions import AdmissionError
from mediashrink.jobs.options import parse_submit_options


class TestParseSubmitOptions:
    """Tests for parse_submit_options."""

    def test_empty(self) -> None:
        """No options leaves every field to the defaults."""
        options = parse_submit_options(None)
        assert options.qualities is None
        assert options.priority is None
        assert options.settings == {}

    def test_qualities_deduplicated(self) -> None:
        """Duplicate qualities are dropped, order kept."""
        options = parse_submit_options({"qualities": ["720p", "480p", "720p"]})
        assert options.qualities == ["720p", "480p"]

    def test_full(self) -> None:
        """All fields are accepted."""
        options = parse_submit_options(
            {
                "qualities": ["1080p_vp9"],
                "priority": 7,
                "max_attempts": 5,
                "settings": {"crf": 20},
            }
        )
        assert options.priority == 7
        assert options.max_attempts == 5
        assert options.settings == {"crf": 20}

    @pytest.mark.parametrize(
        ("options", "fragment"),
        [
            ({"qualities": []}, "qualities must not be empty"),
            ({"qualities": ["4k"]}, "Unknown quality '4k'"),
            ({"priority": -1}, "priority"),
            ({"priority": 1001}, "priority"),
            ({"max_attempts": 0}, "max_attempts"),
            ({"colour": "blue"}, "colour"),
        ],
    )
    def test_invalid(self, options: dict, fragment: str) -> None:
        """Invalid options are admission errors naming the problem."""
        with pytest.raises(AdmissionError, match="Invalid job options") as exc_info:
            parse_submit_options(options)
        assert fragment in str(exc_info.value)
