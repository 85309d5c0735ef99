"""Tests for curing agent dosing and ppm evaluation."""

import math

import pytest

from src.models import CureStatus
from src.services.cure_service import (
    calculate_ppm,
    calculate_required_cure_grams,
    encode_cure_note,
    evaluate_cure_status,
    get_nitrite_fraction,
    parse_cure_type,
)
from src.services.exceptions import ValidationError
from src.services.settings_service import CureSettings


class TestCureAgents:
    """Agent lookup and annotations."""

    def test_nitrite_fractions(self):
        assert get_nitrite_fraction("denkurit") == pytest.approx(0.11)
        assert get_nitrite_fraction("prague1") == pytest.approx(0.0625)

    def test_unknown_agent(self):
        with pytest.raises(ValidationError):
            get_nitrite_fraction("saltpetre")

    @pytest.mark.parametrize(
        "note,expected",
        [
            ("denkurit", "denkurit"),
            ('{"cure_type": "prague1"}', "prague1"),
            ({"cure_type": "denkurit"}, "denkurit"),
            ("Use Prague Powder #1", "prague1"),
            ("DENKURIT sachet", "denkurit"),
            ('{"cure_type": "unknown"}', None),
            ("[1, 2]", None),
            ("plain salt", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse_cure_type(self, note, expected):
        assert parse_cure_type(note) == expected

    def test_encode_round_trips_through_parse(self):
        assert parse_cure_type(encode_cure_note("prague1")) == "prague1"
        assert encode_cure_note(None) is None


class TestRequiredDose:
    """Required grams to reach a target ppm."""

    def test_known_value(self):
        # 125 ppm in 2000 g with an 11% agent
        expected = (125e-6 * 2000) / (0.11 - 125e-6)
        assert calculate_required_cure_grams(2000.0, "denkurit", 125) == pytest.approx(expected)

    @pytest.mark.parametrize("base_mass", [0.0, -5.0, None, float("nan")])
    def test_no_base_mass_gives_zero(self, base_mass):
        assert calculate_required_cure_grams(base_mass, "denkurit", 125) == 0.0

    def test_unreachable_target_gives_zero(self):
        # 6.25% agent cannot reach 70,000 ppm
        assert calculate_required_cure_grams(1000.0, "prague1", 70000) == 0.0

    @pytest.mark.parametrize("cure_type", ["denkurit", "prague1"])
    @pytest.mark.parametrize("base_mass", [150.0, 2100.0, 48000.0])
    @pytest.mark.parametrize("target_ppm", [110.0, 125.0, 156.0])
    def test_dose_reaches_target_ppm(self, cure_type, base_mass, target_ppm):
        dose = calculate_required_cure_grams(base_mass, cure_type, target_ppm)
        assert calculate_ppm(dose, base_mass + dose, cure_type) == pytest.approx(target_ppm)


class TestAchievedPpm:
    """ppm from the cure actually used."""

    def test_known_value(self):
        # 2.5 g of 11% agent in 2002.5 g
        assert calculate_ppm(2.5, 2002.5, "denkurit") == pytest.approx(2.5 * 0.11 / 2002.5 * 1e6)

    def test_non_positive_inputs_give_zero(self):
        assert calculate_ppm(0.0, 1000.0, "denkurit") == 0.0
        assert calculate_ppm(2.0, 0.0, "denkurit") == 0.0


class TestCureStatus:
    """Three-way classification against thresholds."""

    def test_default_thresholds(self):
        assert evaluate_cure_status(109.9) == CureStatus.LOW
        assert evaluate_cure_status(110.0) == CureStatus.OK
        assert evaluate_cure_status(125.0) == CureStatus.OK
        assert evaluate_cure_status(125.1) == CureStatus.HIGH

    def test_custom_thresholds(self):
        settings = CureSettings(min=100.0, target=120.0, max=150.0)
        assert evaluate_cure_status(140.0, settings) == CureStatus.OK
        assert evaluate_cure_status(151.0, settings) == CureStatus.HIGH

    def test_non_finite_is_low(self):
        assert evaluate_cure_status(math.nan) == CureStatus.LOW
        assert evaluate_cure_status(None) == CureStatus.LOW
