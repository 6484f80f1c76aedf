"""Tests for utility helpers."""
import pytest

from ipadown.core.utils import parse_app_id


class TestParseAppId:
    """Test suite for parse_app_id."""

    @pytest.mark.parametrize("link, expected", [
        ("https://apps.apple.com/us/app/example/id544007664", "544007664"),
        ("https://apps.apple.com/us/app/example/id544007664?l=en", "544007664"),
        ("https://apps.apple.com/app/id1234", "1234"),
        ("https://apps.apple.com/us/app/idle-miner/id1116645064", "1116645064"),
        ("544007664", "544007664"),
        ("  544007664\n", "544007664"),
    ])
    def test_valid(self, link, expected):
        assert parse_app_id(link) == expected

    @pytest.mark.parametrize("link", [
        "https://apps.apple.com/us/app/example",
        "https://apps.apple.com/us/app/example/id",
        "",
    ])
    def test_invalid(self, link):
        assert parse_app_id(link) is None
