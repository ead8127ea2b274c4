"""
Copyright 2025 AUMOVIO. All rights reserved.
"""
from controller.control_model.BaseNLP import IndexStyle, NLPProblem, SolverReturn
from controller.control_model.TrackingMPC import MPCResult, TrackingMPC
from controller.control_model.TrackingNLP import TrackingNLP
from controller.control_utils.config import load_config
from controller.control_utils.errors import (
    CoefficientLengthError,
    EndOfPathError,
    FormulationError,
    InputMalformedError,
    MalformedRecordError,
    TrackingError,
)
from controller.control_utils.reference_fit import ReferenceFitter
from controller.control_utils.roadmap import MalformedRecordPolicy, RoadmapStore

__all__ = [
    "IndexStyle", "NLPProblem", "SolverReturn", "MPCResult", "TrackingMPC", "TrackingNLP", "load_config",
    "CoefficientLengthError", "EndOfPathError", "FormulationError", "InputMalformedError",
    "MalformedRecordError", "TrackingError", "ReferenceFitter", "MalformedRecordPolicy", "RoadmapStore",
]
