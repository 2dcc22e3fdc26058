"""Unit tests for team name normalization."""

import pytest

from volleyprono.etl.name_normalization import normalize_team_name


class TestNormalizeTeamName:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("  paris   volley ", "Paris Volley"),
            ("TOURS VB", "Tours Vb"),
            ("tours vb", "Tours Vb"),
            ("Saint-Nazaire  V.B.A.", "Saint-Nazaire V.B.A."),
            ("Chaumont\tVolley-Ball 52", "Chaumont Volley-Ball 52"),
        ],
    )
    def test_examples(self, raw, expected):
        assert normalize_team_name(raw) == expected

    def test_empty(self):
        assert normalize_team_name("") == ""
        assert normalize_team_name(None) == ""

    def test_idempotent(self):
        once = normalize_team_name("  montpellier   HSC vb")
        assert normalize_team_name(once) == once

    def test_club_prefixes_kept(self):
        """'Paris Volley' and 'Paris' are different clubs."""
        assert normalize_team_name("Paris Volley") != normalize_team_name("Paris")
