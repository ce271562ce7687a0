"""
Tests for dosing schedules and the two-compartment PK simulator.
"""

import pytest
import numpy as np

from mabdose.exceptions import InvalidArgument, NumericalInstability
from mabdose.pkpd.compartment_models import (
    TwoCompartmentModel, hybrid_rate_constants, micro_constants
)
from mabdose.pkpd.dosing_regimens import Compartment, DoseEvent, DosingSchedule


class TestDosingSchedule:
    """Test suite for DosingSchedule"""

    def test_repeated_schedule(self):
        schedule = DosingSchedule.repeated(100.0, 180.0, 2)
        assert list(schedule.dose_times) == [0.0, 180.0, 360.0]
        assert [e.amount for e in schedule] == [100.0, 100.0, 100.0]
        assert schedule.total_amount == 300.0

    def test_loading_dose_merged_at_time_zero(self):
        schedule = DosingSchedule.repeated(100.0, 90.0, 1, loading_dose=40.0)
        assert len(schedule) == 2
        assert schedule.events[0] == DoseEvent(amount=140.0, time=0.0)
        assert schedule.events[1].amount == 100.0

    def test_trough_times(self):
        assert list(DosingSchedule.repeated(1.0, 180.0, 2).trough_times(365.0)) == [180.0, 360.0, 365.0]
        assert list(DosingSchedule.repeated(1.0, 90.0, 1).trough_times(180.0)) == [90.0, 180.0]
        assert list(DosingSchedule.repeated(1.0, 30.0, 0).trough_times(30.0)) == [30.0]

    def test_rejects_unordered_events(self):
        with pytest.raises(InvalidArgument, match="increasing"):
            DosingSchedule([DoseEvent(10.0, 5.0), DoseEvent(10.0, 5.0)])

    def test_rejects_negative_amount(self):
        with pytest.raises(InvalidArgument):
            DosingSchedule([DoseEvent(-1.0, 0.0)])

    @pytest.mark.parametrize("interval,additional,loading", [(0.0, 1, 0.0), (30.0, -1, 0.0), (30.0, 1, -5.0)])
    def test_repeated_rejects_bad_arguments(self, interval, additional, loading):
        with pytest.raises(InvalidArgument):
            DosingSchedule.repeated(10.0, interval, additional, loading)


class TestRateConstants:
    """Test suite for micro and hybrid rate constants"""

    def test_hybrid_constants_are_eigenvalues(self, typical_individual):
        p = typical_individual
        model = TwoCompartmentModel()
        arrays = {'cl': np.array([p.cl]), 'v1': np.array([p.v1]),
                  'q': np.array([p.q]), 'v2': np.array([p.v2])}
        eigenvalues = np.sort(np.linalg.eigvals(model.rate_matrices(arrays)[0]).real)
        alpha, beta = hybrid_rate_constants(p.cl, p.v1, p.q, p.v2)
        np.testing.assert_allclose(eigenvalues, [-alpha, -beta], rtol=1e-12)

    def test_ordering(self, typical_individual):
        p = typical_individual
        alpha, beta = hybrid_rate_constants(p.cl, p.v1, p.q, p.v2)
        _, _, k21 = micro_constants(p.cl, p.v1, p.q, p.v2)
        assert alpha > k21 > beta > 0

    def test_half_lives(self, typical_individual):
        model = TwoCompartmentModel()
        assert model.distribution_half_life(typical_individual) < model.elimination_half_life(typical_individual)


class TestTwoCompartmentModel:
    """Test suite for TwoCompartmentModel"""

    @pytest.fixture
    def model(self):
        return TwoCompartmentModel()

    def test_peak_after_single_dose(self, model, typical_individual):
        schedule = DosingSchedule.repeated(1000.0, 180.0, 0)
        trace = model.simulate(schedule, typical_individual, [0.0])
        assert trace.concentration[0] == pytest.approx(1000.0 / 2.75, rel=1e-12)
        assert trace.concentration[0] == pytest.approx(363.636, abs=1e-3)
        assert trace.peripheral[0] == 0.0

    def test_pre_dose_reports_left_limit(self, model, typical_individual):
        schedule = DosingSchedule.repeated(1000.0, 90.0, 1)
        post = model.simulate(schedule, typical_individual, [0.0, 90.0])
        pre = model.simulate(schedule, typical_individual, [0.0, 90.0], pre_dose=True)
        assert pre.central[0] == 0.0
        assert post.central[1] - pre.central[1] == pytest.approx(1000.0)
        assert post.peripheral[1] == pytest.approx(pre.peripheral[1])

    def test_matches_matrix_exponential(self, typical_individual):
        schedule = DosingSchedule.repeated(500.0, 60.0, 3, loading_dose=250.0)
        times = np.linspace(0.0, 300.0, 41)
        analytic = TwoCompartmentModel('analytic').simulate(schedule, typical_individual, times)
        reference = TwoCompartmentModel('expm').simulate(schedule, typical_individual, times)
        np.testing.assert_allclose(analytic.central, reference.central, rtol=1e-9, atol=1e-9)
        np.testing.assert_allclose(analytic.peripheral, reference.peripheral, rtol=1e-9, atol=1e-9)

    def test_matches_numerical_integration(self, model, typical_individual):
        schedule = DosingSchedule.repeated(1000.0, 90.0, 1, loading_dose=200.0)
        times = np.array([0.0, 1.0, 10.0, 45.0, 90.0, 120.0, 180.0])
        closed_form = model.simulate(schedule, typical_individual, times)
        integrated = model.integrate_reference(schedule, typical_individual, times)
        np.testing.assert_allclose(closed_form.central, integrated.central, rtol=1e-6)
        np.testing.assert_allclose(closed_form.peripheral, integrated.peripheral, rtol=1e-6, atol=1e-9)

    def test_concentration_declines_after_last_dose(self, model, typical_individual):
        schedule = DosingSchedule.repeated(1000.0, 180.0, 0)
        trace = model.simulate(schedule, typical_individual, np.linspace(0.0, 365.0, 200))
        assert np.all(np.diff(trace.concentration) < 0)
        assert np.all(trace.concentration > 0)

    def test_mass_is_conserved_without_clearance_loss(self, model, typical_individual):
        schedule = DosingSchedule.repeated(1000.0, 180.0, 0)
        trace = model.simulate(schedule, typical_individual, np.linspace(0.0, 50.0, 11))
        total = trace.central + trace.peripheral
        assert np.all(total <= 1000.0 + 1e-9)
        assert np.all(np.diff(total) < 0)

    def test_linear_in_dose(self, model, typical_individual):
        times = [30.0, 90.0, 180.0]
        one = model.simulate(DosingSchedule.repeated(1.0, 90.0, 1), typical_individual, times)
        many = model.simulate(DosingSchedule.repeated(750.0, 90.0, 1), typical_individual, times)
        np.testing.assert_allclose(many.concentration, 750.0 * one.concentration, rtol=1e-12)

    def test_population_rows_match_individual_runs(self, model, population):
        schedule = DosingSchedule.repeated(1000.0, 90.0, 1)
        times = [45.0, 90.0, 180.0]
        trace = model.simulate_population(schedule, population, times)
        assert trace.concentration.shape == (len(population), 3)
        for i in (0, 17, len(population) - 1):
            single = model.simulate(schedule, population[i], times)
            np.testing.assert_allclose(trace.concentration[i], single.concentration, rtol=1e-12)
        assert list(trace.individual_ids) == [p.individual_id for p in population]

    def test_peripheral_dosing(self, model, typical_individual):
        schedule = DosingSchedule([DoseEvent(100.0, 0.0, Compartment.PERIPHERAL)])
        trace = model.simulate(schedule, typical_individual, [0.0, 5.0])
        assert trace.central[0] == 0.0
        assert trace.peripheral[0] == 100.0
        assert trace.central[1] > 0.0

    @pytest.mark.parametrize("times", [[], [5.0, 1.0], [-1.0], [np.nan]])
    def test_invalid_output_times(self, model, typical_individual, times):
        with pytest.raises(InvalidArgument):
            model.simulate(DosingSchedule.repeated(1.0, 10.0, 0), typical_individual, times)

    def test_unknown_method(self):
        with pytest.raises(InvalidArgument):
            TwoCompartmentModel('euler')

    def test_negative_amounts_raise_instability(self, model, population, monkeypatch):
        def broken(arrays, dt):
            phi = np.zeros((len(arrays['cl']), 2, 2))
            phi[:, 0, 0] = -1.0
            return phi

        monkeypatch.setattr(model, 'transition_matrices', broken)
        with pytest.raises(NumericalInstability) as excinfo:
            model.simulate_population(DosingSchedule.repeated(10.0, 30.0, 0), population, [10.0])
        assert excinfo.value.individual_ids == tuple(p.individual_id for p in population)
