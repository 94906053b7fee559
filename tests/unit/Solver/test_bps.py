"""Unit tests for Solver.bps (BenchmarkProblem)."""

import pytest

from config import BenchmarkConfig
from FEM.errors import ConfigError, UnknownProblem
from FEM.problems import ProblemId
from Meshing import BOUNDARY_LABEL
from Solver.bps import BenchmarkProblem, MethodType


def _config(ceed_resource: str, **kwargs) -> BenchmarkConfig:
    kwargs.setdefault("faces", (2, 2, 2))
    kwargs.setdefault("order", 2)
    return BenchmarkConfig(ceed_resource=ceed_resource, **kwargs)


class TestBenchmarkProblem:
    """Tests for the benchmark-problem context."""

    @pytest.mark.parametrize("problem, ncomp", [("bp1", 1), ("bp4", 3), ("BP6", 3)])
    def test_setup(self, ceed_resource, problem, ncomp):
        """Test the spaces and the problem shape of a context."""
        bp = BenchmarkProblem(_config(ceed_resource, problem=problem))

        assert bp.method is MethodType.BENCHMARK_PROBLEM
        assert bp.problem_id is ProblemId.from_string(problem)
        assert bp.space.num_components == ncomp
        assert bp.space.order == 2

    def test_boundary_only_for_diffusion(self, ceed_resource):
        """Test that only diffusion problems mark and constrain the boundary."""
        mass = BenchmarkProblem(_config(ceed_resource, problem="bp1"))
        diffusion = BenchmarkProblem(_config(ceed_resource, problem="bp3"))

        assert mass.space.boundary is None
        assert not mass.mesh.has_label(BOUNDARY_LABEL)
        assert diffusion.space.boundary is not None
        assert diffusion.space.global_size < mass.space.global_size

    def test_operator_is_cached(self, ceed_resource):
        """Test that the operator is built once and shared by all shells."""
        bp = BenchmarkProblem(_config(ceed_resource, problem="bp3"))

        assert bp.operator is bp.operator
        A, B = bp.mat_shell(), bp.mat_shell()
        assert A.raw is not B.raw
        assert A.shape == B.shape == (bp.space.global_size, bp.space.global_size)

    @pytest.mark.parametrize(
        "kwargs, error",
        [
            (dict(problem="bp9"), UnknownProblem),
            (dict(order=0), ConfigError),
            (dict(q_extra=-1), ConfigError),
        ],
    )
    def test_invalid_config(self, ceed_resource, kwargs, error):
        """Test that invalid configurations are rejected before building anything."""
        with pytest.raises(error):
            BenchmarkProblem(_config(ceed_resource, **kwargs))
