"""
Tests for the concentration to efficacy transform.
"""

import pytest
import numpy as np

from mabdose.config import PharmacodynamicConfig, TITER_SCALING_CONSTANT
from mabdose.exceptions import DomainError, InvalidArgument
from mabdose.pkpd.efficacy_models import (
    NeutralizationEfficacyModel, efficacy_from_concentration, titer_from_concentration
)


class TestTiter:
    """Test suite for the titer proxy"""

    def test_scaling(self):
        titer = titer_from_concentration(69.52, 0.1)
        assert titer == pytest.approx(69.52 / 0.1 / 347.6)
        assert TITER_SCALING_CONSTANT == 347.6

    def test_custom_scaling_constant(self):
        config = PharmacodynamicConfig(titer_scaling_constant=1.0)
        assert titer_from_concentration(2.0, 0.5, config) == pytest.approx(4.0)

    def test_zero_concentration_is_floored(self):
        titer = titer_from_concentration(0.0, 0.1)
        assert titer > 0
        assert np.isfinite(np.log10(titer))

    @pytest.mark.parametrize("concentration,ic50", [(-1.0, 0.1), (np.nan, 0.1), (1.0, 0.0), (1.0, -2.0)])
    def test_domain_errors(self, concentration, ic50):
        with pytest.raises(DomainError):
            titer_from_concentration(concentration, ic50)


class TestEfficacy:
    """Test suite for the efficacy sigmoid"""

    def test_half_maximal_at_half_max_titer(self):
        concentration = 0.2 * 0.1 * TITER_SCALING_CONSTANT
        effect = efficacy_from_concentration(concentration, 0.1, 0.95, 3.0, 0.2)
        assert effect == pytest.approx(50.0, rel=1e-12)

    def test_increasing_and_bounded(self):
        concentrations = np.logspace(-3, 4, 50)
        effect = efficacy_from_concentration(concentrations, 0.1, 0.95, 3.0, 0.2)
        assert np.all(np.diff(effect) > 0)
        assert np.all(effect < 95.0)
        assert effect[-1] == pytest.approx(95.0, abs=0.1)

    def test_zero_concentration_gives_no_efficacy(self):
        effect = efficacy_from_concentration(0.0, 0.1, 0.95, 3.0, 0.2)
        assert np.isfinite(effect)
        assert effect == pytest.approx(0.0, abs=1e-12)

    @pytest.mark.parametrize("max_effect", [0.5, 0.3, 1.2])
    def test_max_effect_range(self, max_effect):
        with pytest.raises(InvalidArgument):
            efficacy_from_concentration(10.0, 0.1, max_effect, 3.0, 0.2)

    def test_non_positive_half_max_titer(self):
        with pytest.raises(DomainError):
            efficacy_from_concentration(10.0, 0.1, 0.95, 3.0, 0.0)


class TestNeutralizationEfficacyModel:
    """Test suite for NeutralizationEfficacyModel"""

    @pytest.fixture
    def model(self):
        return NeutralizationEfficacyModel()

    def test_population_response(self, model, population):
        concentrations = np.tile([0.0, 7.0, 70.0], (len(population), 1))
        effect = model.predict_response(concentrations, population)
        assert effect.shape == concentrations.shape
        assert np.all(effect[:, 0] < effect[:, 1])
        assert np.all(effect[:, 1] < effect[:, 2])

    def test_row_mismatch(self, model, population):
        with pytest.raises(InvalidArgument):
            model.predict_response(np.ones((3, 2)), population)

    def test_inverse(self, model):
        concentration = model.concentration_for_efficacy(80.0, 0.1, 0.95, 3.0, 0.2)
        effect = efficacy_from_concentration(concentration, 0.1, 0.95, 3.0, 0.2)
        assert effect == pytest.approx(80.0, rel=1e-10)

    def test_inverse_unreachable(self, model):
        with pytest.raises(DomainError):
            model.concentration_for_efficacy(96.0, 0.1, 0.95, 3.0, 0.2)
