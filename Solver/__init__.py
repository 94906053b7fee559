"""Initialize Meles Solver."""

__author__ = "Ferran de Andres <ferran.de-andres-vert@campus.tu-berlin.de>"

from .bps import BenchmarkProblem, MethodType
from .linear import BenchmarkSolver, SolveReport
from .shell import OperatorShellContext, ShellState, create_operator_shell
from .utils import KSPType, PreconditionerType, iKSP

__all__ = [
    "iKSP",
    "KSPType",
    "ShellState",
    "MethodType",
    "SolveReport",
    "BenchmarkSolver",
    "BenchmarkProblem",
    "PreconditionerType",
    "OperatorShellContext",
    "create_operator_shell",
]
