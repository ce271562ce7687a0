"""
Shared fixtures for the dosing engine tests.
"""

import pytest
import numpy as np

from mabdose.pkpd.population_models import PopulationSpec, PopulationParameterSet, PopulationSample

TYPICAL_VALUES = {
    'cl': 0.05,
    'v1': 2.75,
    'q': 0.25,
    'v2': 2.75,
    'ic50': 0.1,
    'max_effect': 0.95,
    'slope': 3.0,
    'half_max_titer': 0.2,
}


@pytest.fixture
def typical_values():
    return dict(TYPICAL_VALUES)


@pytest.fixture
def typical_individual():
    return PopulationParameterSet(individual_id=1, **TYPICAL_VALUES)


@pytest.fixture
def population_spec():
    """50 individuals with log-normal variability on clearance and central volume"""
    return PopulationSpec(
        typical_values=dict(TYPICAL_VALUES),
        variability={'cl': 0.25, 'v1': 0.30},
        n_individuals=50,
        seed=20240601
    )


@pytest.fixture
def population(population_spec):
    return population_spec.sample(np.random.default_rng(12345))


@pytest.fixture
def homogeneous_population():
    """Five identical typical individuals"""
    return PopulationSample(
        PopulationParameterSet(individual_id=i + 1, **TYPICAL_VALUES) for i in range(5)
    )
