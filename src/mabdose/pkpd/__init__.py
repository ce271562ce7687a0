"""PK/PD models: population sampling, dosing schedules, two-compartment PK, efficacy transform."""

from .population_models import PopulationSampler, PopulationParameterSet, PopulationSample, PopulationSpec
from .dosing_regimens import DoseEvent, DosingSchedule, Compartment
from .compartment_models import TwoCompartmentModel, ConcentrationTrace, PopulationTrace
from .efficacy_models import NeutralizationEfficacyModel, titer_from_concentration, efficacy_from_concentration

__all__ = [
    'PopulationSampler', 'PopulationParameterSet', 'PopulationSample', 'PopulationSpec',
    'DoseEvent', 'DosingSchedule', 'Compartment',
    'TwoCompartmentModel', 'ConcentrationTrace', 'PopulationTrace',
    'NeutralizationEfficacyModel', 'titer_from_concentration', 'efficacy_from_concentration'
]
