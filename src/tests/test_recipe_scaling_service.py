"""Tests for recipe scaling and ingredient targets.

Tests for:
- The prioritized fallback used for scaling factor and cure base mass
- Scaling factor rules (override, input/base, default 1)
- Per-ingredient targets, including ppm-dosed cure lines
- scale_recipe() and compute_batch_targets() over the database
"""

from types import SimpleNamespace

import pytest

from src.models import Batch
from src.services.exceptions import BatchNotFound, RecipeNotFound, ValidationError
from src.services.recipe_scaling_service import (
    calculate_ingredient_target,
    calculate_non_cure_mass_grams,
    calculate_scaled_targets,
    compute_batch_targets,
    compute_scaling_factor,
    determine_cure_base_mass,
    first_positive,
    scale_recipe,
)
from src.services.settings_service import CureSettings, set_setting


def line(quantity, unit="g", is_cure=False, cure_type=None, notes=None, material_id=None):
    """Lightweight stand-in for a RecipeIngredient row."""
    return SimpleNamespace(
        material_id=material_id,
        quantity=quantity,
        unit=unit,
        is_cure=is_cure,
        cure_type=cure_type,
        notes=notes,
    )


def denkurit_dose(base_mass, target_ppm=125.0):
    t = target_ppm / 1e6
    return t * base_mass / (0.11 - t)


# ============================================================================
# Fallback and Scaling Factor
# ============================================================================


class TestFirstPositive:
    def test_skips_none_zero_and_negative(self):
        assert first_positive(None, 0, -3.0, 1500.0, 2000.0) == 1500.0

    def test_skips_non_finite(self):
        assert first_positive(float("nan"), float("inf"), 7.0) == 7.0

    def test_none_when_nothing_qualifies(self):
        assert first_positive(0, None, -1) is None
        assert first_positive() is None


class TestScalingFactor:
    def test_override_wins(self):
        assert compute_scaling_factor(2000.0, 1000.0, override=1.5) == 1.5

    def test_non_positive_override_is_ignored(self):
        assert compute_scaling_factor(2000.0, 1000.0, override=0.0) == 2.0

    def test_input_over_base(self):
        assert compute_scaling_factor(2000.0, 1000.0) == 2.0

    def test_no_base_mass_defaults_to_one(self):
        assert compute_scaling_factor(2000.0, 0.0) == 1.0

    def test_zero_input_is_rejected(self):
        with pytest.raises(ValidationError):
            compute_scaling_factor(0.0, 1000.0)


# ============================================================================
# Targets
# ============================================================================


class TestTargets:
    def test_scaling_is_linear(self):
        ingredients = [line(50.0), line(0.2, "kg"), line(30.0, "ml")]
        single = calculate_scaled_targets(ingredients, 2.0)
        double = calculate_scaled_targets(ingredients, 4.0)
        for a, b in zip(single, double):
            assert b.target_amount == pytest.approx(a.target_amount * 2)

    def test_display_unit_conversion(self):
        [target] = calculate_scaled_targets([line(0.2, "kg")], 2.0, display_unit="g")
        assert target.unit == "g"
        assert target.target_amount == pytest.approx(400.0)

    def test_cure_lines_are_not_scaled_targets(self):
        targets = calculate_scaled_targets([line(50.0), line(2.5, is_cure=True)], 2.0)
        assert len(targets) == 1

    def test_scaled_targets_reject_bad_factor(self):
        with pytest.raises(ValidationError):
            calculate_scaled_targets([line(50.0)], 0)

    def test_non_cure_mass_skips_volume_and_cure(self):
        ingredients = [
            line(1000.0),
            line(0.05, "kg"),
            line(30.0, "ml"),
            line(2.5, is_cure=True, cure_type="denkurit"),
        ]
        assert calculate_non_cure_mass_grams(ingredients, 2.0) == pytest.approx(2100.0)

    def test_base_mass_fallback_order(self):
        only_cure = [line(2.5, is_cure=True, cure_type="denkurit")]
        assert determine_cure_base_mass(only_cure, 2.0, 1800.0, 1000.0) == 1800.0
        assert determine_cure_base_mass(only_cure, 2.0, 0.0, 1000.0) == 2000.0
        assert determine_cure_base_mass(only_cure, 2.0, None, None) == 0.0

    def test_cure_line_targets_required_dose(self):
        cure = line(2.5, is_cure=True, cure_type="denkurit")
        target = calculate_ingredient_target(cure, 2.0, 2100.0, CureSettings())
        assert target.is_cure is True
        assert target.cure_type == "denkurit"
        assert target.cure_required_grams == pytest.approx(denkurit_dose(2100.0))
        assert target.target_amount == pytest.approx(denkurit_dose(2100.0))

    def test_cure_type_from_legacy_note(self):
        cure = line(2.5, is_cure=True, notes='{"cure_type": "prague1"}')
        target = calculate_ingredient_target(cure, 1.0, 1000.0, CureSettings())
        assert target.cure_type == "prague1"

    def test_cure_line_without_agent_is_scaled(self):
        cure = line(2.5, is_cure=True)
        target = calculate_ingredient_target(cure, 2.0, 2100.0, CureSettings())
        assert target.cure_required_grams is None
        assert target.target_amount == pytest.approx(5.0)

    def test_cure_line_without_base_mass_is_scaled(self):
        cure = line(2.5, is_cure=True, cure_type="denkurit")
        target = calculate_ingredient_target(cure, 2.0, 0.0, CureSettings())
        assert target.target_amount == pytest.approx(5.0)


# ============================================================================
# Database-backed Operations
# ============================================================================


class TestScaleRecipe:
    def test_scale_recipe(self, db_session, jerky_recipe):
        result = scale_recipe(jerky_recipe.id, 2.0, "kg", session=db_session)
        assert result["scaling_factor"] == pytest.approx(2.0)
        assert result["input_mass_grams"] == pytest.approx(2000.0)
        by_name = {i["material_name"]: i for i in result["scaled_ingredients"]}
        assert by_name["Salt"]["scaled_quantity"] == pytest.approx(100.0)
        assert by_name["Denkurit"]["is_cure"] is True
        assert by_name["Denkurit"]["is_critical"] is True

    def test_scale_recipe_rejects_zero_mass(self, db_session, jerky_recipe):
        with pytest.raises(ValidationError):
            scale_recipe(jerky_recipe.id, 0, session=db_session)

    def test_scale_recipe_unknown(self, db_session):
        with pytest.raises(RecipeNotFound):
            scale_recipe(999, 1.0, session=db_session)


class TestComputeBatchTargets:
    def _batch(self, db_session, recipe, input_mass=2.0, scaling_factor=None):
        batch = Batch(
            batch_number="B-TEST-1",
            recipe_id=recipe.id,
            input_mass=input_mass,
            input_unit="kg",
            scaling_factor=scaling_factor,
        )
        db_session.add(batch)
        db_session.flush()
        return batch

    def test_targets(self, db_session, jerky_recipe, salt, cure_salt):
        batch = self._batch(db_session, jerky_recipe)
        targets = {t.material_id: t for t in compute_batch_targets(batch.id, session=db_session)}

        assert targets[salt.id].target_amount == pytest.approx(100.0)
        assert targets[cure_salt.id].target_amount == pytest.approx(denkurit_dose(2100.0))

    def test_explicit_factor_overrides_input_mass(self, db_session, jerky_recipe, salt):
        batch = self._batch(db_session, jerky_recipe, scaling_factor=3.0)
        targets = {t.material_id: t for t in compute_batch_targets(batch.id, session=db_session)}
        assert targets[salt.id].target_amount == pytest.approx(150.0)

    def test_target_ppm_from_settings(self, db_session, jerky_recipe, cure_salt):
        set_setting("cure_ppm_target", "150", session=db_session)
        batch = self._batch(db_session, jerky_recipe)
        targets = {t.material_id: t for t in compute_batch_targets(batch.id, session=db_session)}
        assert targets[cure_salt.id].cure_required_grams == pytest.approx(
            denkurit_dose(2100.0, 150.0)
        )

    def test_display_unit(self, db_session, jerky_recipe, salt):
        batch = self._batch(db_session, jerky_recipe)
        targets = {
            t.material_id: t
            for t in compute_batch_targets(batch.id, display_unit="kg", session=db_session)
        }
        assert targets[salt.id].target_amount == pytest.approx(0.1)

    def test_unknown_batch(self, db_session):
        with pytest.raises(BatchNotFound):
            compute_batch_targets(999, session=db_session)
