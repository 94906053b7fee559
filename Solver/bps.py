"""Meles benchmark-problem context.

Ties a run configuration to the objects a solve needs: the libCEED context, the box mesh, the function spaces and,
on request, the operator shell handed to PETSc.

Example:

    problem = BenchmarkProblem(BenchmarkConfig(problem="bp3", order=2, faces=(4, 4, 4)))
    A = problem.mat_shell()
    b = A.create_vector_left()
"""

from __future__ import annotations

import logging
from enum import StrEnum, auto

import libceed
from mpi4py import MPI

from config import BenchmarkConfig
from FEM.bcs import define_essential_boundary
from FEM.errors import ConfigError
from FEM.operators import BenchmarkOperator, build_bp_operator
from FEM.problems import ProblemId, ProblemSpec, lookup
from FEM.spaces import FunctionSpace
from FEM.utils import iPETScMatrix
from lib.loggingutils import log_global, log_stage
from Meshing import BoxMesh

from .shell import create_operator_shell

logger = logging.getLogger(__name__)


class MethodType(StrEnum):
    """Kind of problem a context is set up for."""

    BENCHMARK_PROBLEM = auto()
    """CEED benchmark problems (BP1-BP6)."""


class BenchmarkProblem:
    """Discretization of one CEED benchmark problem."""

    def __init__(
        self,
        config: BenchmarkConfig,
        method: MethodType = MethodType.BENCHMARK_PROBLEM,
        *,
        comm: MPI.Intracomm = MPI.COMM_WORLD,
        mesh: BoxMesh | None = None,
    ) -> None:
        """Initialize the context. A mesh can be passed in to control its partition or cell traversal."""
        self._config = config
        self._method = method
        self._problem_id = ProblemId.from_string(config.problem)
        self._spec = lookup(self._problem_id)
        if config.order < 1:
            raise ConfigError(f"Polynomial order must be at least 1, got {config.order}.")
        if config.q_extra < 0:
            raise ConfigError(f"'q_extra' must be non-negative, got {config.q_extra}.")

        log_global(
            logger,
            logging.INFO,
            "Setting up %s (order %d, q_extra %d) on '%s'",
            self._problem_id.name,
            config.order,
            config.q_extra,
            config.ceed_resource,
        )
        try:
            self._ceed = libceed.Ceed(config.ceed_resource)
        except Exception as e:
            raise ConfigError(f"Cannot initialize libCEED resource '{config.ceed_resource}'.") from e

        with log_stage(logger, "mesh"):
            self._mesh = mesh or BoxMesh(config.faces, config.lower, config.upper, comm=comm)
        with log_stage(logger, "function spaces"):
            boundary = define_essential_boundary(self._mesh, self._spec.enforce_boundary)
            self._space = FunctionSpace(
                self._mesh, config.order, self._spec.num_components, boundary=boundary
            )
            self._coordinate_space = FunctionSpace(self._mesh, 1, self._mesh.dim)
        self._operator: BenchmarkOperator | None = None

        log_global(logger, logging.INFO, "Global DOFs: %d", self._space.global_size)

    @property
    def config(self) -> BenchmarkConfig:
        """Run configuration."""
        return self._config

    @property
    def method(self) -> MethodType:
        """Problem kind."""
        return self._method

    @property
    def problem_id(self) -> ProblemId:
        """Benchmark problem."""
        return self._problem_id

    @property
    def spec(self) -> ProblemSpec:
        """Shape of the benchmark problem."""
        return self._spec

    @property
    def ceed(self) -> libceed.Ceed:
        """libCEED context."""
        return self._ceed

    @property
    def mesh(self) -> BoxMesh:
        """Box mesh."""
        return self._mesh

    @property
    def space(self) -> FunctionSpace:
        """Solution space."""
        return self._space

    @property
    def operator(self) -> BenchmarkOperator:
        """Benchmark operator, built on first access."""
        if self._operator is None:
            self._operator = build_bp_operator(
                self._ceed, self._space, self._coordinate_space, self._spec, self._config.q_extra
            )
        return self._operator

    def mat_shell(self) -> iPETScMatrix:
        """Return a new PETSc shell matrix applying the benchmark operator."""
        if self._method is not MethodType.BENCHMARK_PROBLEM:
            raise ConfigError("Operator shells can only be created for benchmark problems.")
        return create_operator_shell(self._ceed, self._space, self.operator)
