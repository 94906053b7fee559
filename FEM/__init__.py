"""Initialize Meles FEM."""

from .basis import Basis, build_basis
from .bcs import EssentialBoundary, boundary_function_diff, define_essential_boundary
from .errors import (
    ConfigError,
    FieldError,
    FieldSizeMismatch,
    InconsistentClosure,
    InvalidBasis,
    MelesError,
    MissingLabel,
    OperatorRuntimeError,
    TopologyError,
    UnknownProblem,
)
from .operators import (
    BenchmarkOperator,
    ComposedOperator,
    FieldRole,
    OperatorField,
    QuadratureData,
    build_bp_operator,
    run_setup_pass,
)
from .problems import ProblemId, ProblemSpec, QuadratureMode, lookup
from .restriction import Restriction, build_restriction, build_strided_restriction, involute
from .spaces import FunctionSpace
from .utils import iPETScMatrix, iPETScVector, wrap_local

__author__ = "Ferran de Andres <ferran.de-andres-vert@campus.tu-berlin.de>"
__all__ = [
    "Basis",
    "lookup",
    "involute",
    "FieldRole",
    "ProblemId",
    "FieldError",
    "wrap_local",
    "ConfigError",
    "MelesError",
    "build_basis",
    "ProblemSpec",
    "Restriction",
    "iPETScMatrix",
    "iPETScVector",
    "InvalidBasis",
    "MissingLabel",
    "FunctionSpace",
    "OperatorField",
    "TopologyError",
    "QuadratureData",
    "QuadratureMode",
    "UnknownProblem",
    "run_setup_pass",
    "ComposedOperator",
    "BenchmarkOperator",
    "EssentialBoundary",
    "FieldSizeMismatch",
    "build_restriction",
    "build_bp_operator",
    "InconsistentClosure",
    "OperatorRuntimeError",
    "boundary_function_diff",
    "define_essential_boundary",
    "build_strided_restriction",
]
