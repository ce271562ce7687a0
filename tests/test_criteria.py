"""
Tests for the population percentile criterion and DosingProblem.
"""

import pytest
import numpy as np

from mabdose.config import PharmacodynamicConfig
from mabdose.exceptions import InvalidArgument
from mabdose.optimization.criteria import DosingProblem, PercentileCriterion, ResponseSelector
from mabdose.pkpd.compartment_models import TwoCompartmentModel
from mabdose.pkpd.efficacy_models import NeutralizationEfficacyModel


class TestPercentileCriterion:
    """Test suite for PercentileCriterion"""

    def test_linear_quantile(self):
        assert PercentileCriterion.quantiles(np.array([5.0, 3.0, 1.0, 4.0, 2.0]), 0.1) == pytest.approx(1.4)

    def test_minimum_over_troughs(self):
        values = np.column_stack([
            np.arange(1.0, 11.0),
            np.arange(1.0, 11.0) + 5.0
        ])
        # 10th percentile of 1..10 is 1.9, of 6..15 is 6.9
        assert PercentileCriterion.evaluate(values, 0.10, 1.0) == pytest.approx(0.9)

    def test_sign_convention(self):
        values = np.full((10, 2), 50.0)
        assert PercentileCriterion.evaluate(values, 0.1, 40.0) > 0
        assert PercentileCriterion.evaluate(values, 0.1, 60.0) < 0

    def test_invalid_fraction(self):
        with pytest.raises(InvalidArgument):
            PercentileCriterion.evaluate(np.ones((5, 1)), 1.5, 0.0)

    def test_from_trace_efficacy(self, population):
        model = TwoCompartmentModel()
        problem = DosingProblem(population, 90.0, 180.0, target=50.0)
        trace = model.simulate_population(problem.schedule(500.0), population,
                                          problem.trough_times(), pre_dose=True)
        value = PercentileCriterion.from_trace(trace, ResponseSelector.EFFICACY, population, 0.1, 50.0)
        expected = NeutralizationEfficacyModel().predict_trace(trace, population)
        assert value == pytest.approx(np.min(np.quantile(expected, 0.1, axis=0)) - 50.0)


class TestResponseSelector:
    """Test suite for ResponseSelector"""

    @pytest.mark.parametrize("raw,expected", [
        ('PK', ResponseSelector.CONCENTRATION), ('pd', ResponseSelector.EFFICACY),
        (ResponseSelector.EFFICACY, ResponseSelector.EFFICACY)
    ])
    def test_parse(self, raw, expected):
        assert ResponseSelector.parse(raw) is expected

    def test_parse_unknown(self):
        with pytest.raises(InvalidArgument, match="PK"):
            ResponseSelector.parse('AUC')

    def test_resolve_concentration(self, population):
        model = TwoCompartmentModel()
        problem = DosingProblem(population, 90.0, 180.0, target=1.0)
        trace = model.simulate_population(problem.schedule(100.0), population, [10.0, 20.0])
        np.testing.assert_array_equal(ResponseSelector.CONCENTRATION.resolve()(trace, population),
                                      trace.concentration)


class TestDosingProblem:
    """Test suite for DosingProblem"""

    @pytest.mark.parametrize("interval,coverage,expected", [
        (180.0, 365.0, 3), (90.0, 180.0, 2), (200.0, 100.0, 1), (30.0, 30.0, 1), (7.0, 28.0, 4)
    ])
    def test_number_of_doses(self, homogeneous_population, interval, coverage, expected):
        problem = DosingProblem(homogeneous_population, interval, coverage, target=1.0)
        assert problem.number_of_doses == expected
        assert len(problem.schedule(1.0)) == expected

    def test_trough_times(self, homogeneous_population):
        problem = DosingProblem(homogeneous_population, 180.0, 365.0, target=1.0)
        assert list(problem.trough_times()) == [180.0, 360.0, 365.0]

    def test_criterion_is_linear_in_dose_for_concentration(self, population):
        problem = DosingProblem(population, 180.0, 365.0, target=40.0)
        per_mg = problem.criterion(1.0) + 40.0
        assert problem.criterion(1500.0) == pytest.approx(1500.0 * per_mg - 40.0, rel=1e-10)

    def test_criterion_increases_with_each_dose(self, population):
        problem = DosingProblem(population, 90.0, 180.0, target=30.0)
        base = problem.criterion(300.0, 100.0)
        assert problem.criterion(310.0, 100.0) > base
        assert problem.criterion(300.0, 110.0) > base

    def test_criterion_at_zero_dose(self, population):
        problem = DosingProblem(population, 90.0, 180.0, target=30.0)
        assert problem.criterion(0.0) == pytest.approx(-30.0)

    def test_efficacy_criterion(self, population):
        problem = DosingProblem(population, 180.0, 365.0, target=50.0,
                                selector=ResponseSelector.EFFICACY,
                                pd_config=PharmacodynamicConfig())
        assert problem.criterion(0.0) == pytest.approx(-50.0)
        assert problem.criterion(5000.0) > 0

    def test_total_mass(self, homogeneous_population):
        problem = DosingProblem(homogeneous_population, 90.0, 180.0, target=1.0)
        assert problem.total_mass(100.0, 50.0) == 250.0
        assert problem.total_mass(100.0, 50.0, repeated_weight=2.0) == 450.0

    @pytest.mark.parametrize("kwargs", [
        {'dosing_interval': 0.0}, {'coverage_duration': -1.0}, {'lower_tail_fraction': 1.0}
    ])
    def test_invalid_problem(self, homogeneous_population, kwargs):
        arguments = dict(population=homogeneous_population, dosing_interval=90.0,
                         coverage_duration=180.0, target=1.0)
        arguments.update(kwargs)
        with pytest.raises(InvalidArgument):
            DosingProblem(**arguments)
