"""Unit tests for Solver.linear (BenchmarkSolver)."""

from pathlib import Path

import numpy as np
import pytest
from mpi4py import MPI

from config import BenchmarkConfig, SolverConfig
from FEM.problems import ProblemId
from Solver.bps import BenchmarkProblem
from Solver.linear import BenchmarkSolver, SolveReport


def _solver(problem: ProblemId, ceed_resource: str, **kwargs) -> BenchmarkSolver:
    cfg = BenchmarkConfig(
        problem=problem.value, order=2, q_extra=1, ceed_resource=ceed_resource, faces=(3, 3, 3), **kwargs
    )
    return BenchmarkSolver(BenchmarkProblem(cfg))


class TestSolve:
    """Tests for the manufactured-solution solve."""

    @pytest.mark.parametrize("problem", list(ProblemId), ids=lambda p: p.name)
    def test_converges_to_exact(self, ceed_resource, problem):
        """Test that CG + Jacobi recovers the interpolant used to build the right-hand side."""
        solver = _solver(problem, ceed_resource)
        u, report = solver.solve()

        assert report.converged
        assert report.iterations > 0
        assert report.relative_error < 1e-7
        assert report.global_dofs == solver.problem.space.global_size
        assert u.size == report.global_dofs

    def test_residual_history(self, ceed_resource):
        """Test that the monitor records a decreasing residual history."""
        solver = _solver(ProblemId.BP3, ceed_resource)
        _, report = solver.solve()
        history = solver.get_residual_history()

        assert history == report.residual_history
        assert len(history) == report.iterations + 1
        assert history[-1] < history[0]

    def test_monitor_disabled(self, ceed_resource):
        """Test that no history is recorded without the monitor."""
        solver = _solver(ProblemId.BP1, ceed_resource)
        _, report = solver.solve(enable_monitor=False)

        assert report.converged
        assert solver.get_residual_history() == []

    def test_no_preconditioner(self, ceed_resource):
        """Test that the solve also runs unpreconditioned."""
        solver = BenchmarkSolver(
            _solver(ProblemId.BP1, ceed_resource).problem,
            SolverConfig(ksp_type="cg", pc_type="none", rtol=1e-10),
        )
        _, report = solver.solve()

        assert report.converged
        assert report.relative_error < 1e-7

    def test_iteration_limit(self, ceed_resource):
        """Test that hitting the iteration limit is reported, not raised."""
        solver = _solver(
            ProblemId.BP3, ceed_resource, solver=SolverConfig(rtol=1e-14, max_it=1)
        )
        _, report = solver.solve()

        assert not report.converged
        assert report.iterations == 1

    def test_exact_solution_values(self, ceed_resource):
        """Test that the exact solution interpolates the boundary function on the free nodes."""
        solver = _solver(ProblemId.BP2, ceed_resource)
        u = solver.exact_solution()
        values = u.as_array().reshape(-1, 3)

        np.testing.assert_allclose(values[:, 0], values[:, 2])
        assert np.abs(values).max() <= 1.0


class TestReport:
    """Tests for SolveReport."""

    def test_throughput(self):
        """Test the DOF-per-second metric."""
        report = SolveReport(
            iterations=10,
            residual_norm=1e-12,
            relative_error=1e-10,
            converged_reason=2,
            solve_time=0.5,
            global_dofs=1000,
        )

        assert report.converged
        assert report.dofs_per_second == pytest.approx(20000.0)

    def test_zero_time(self):
        """Test that an instantaneous solve does not divide by zero."""
        report = SolveReport(0, 0.0, 0.0, -3, 0.0, 10)

        assert not report.converged
        assert report.dofs_per_second == 0.0


@pytest.mark.skipif(MPI.COMM_WORLD.size > 1, reason="Plots are written by rank 0 only")
def test_plot_residuals(ceed_resource, tmp_path: Path):
    """Test that the residual plot is written."""
    solver = _solver(ProblemId.BP1, ceed_resource)
    solver.solve()
    output_path = tmp_path / "plots" / "residuals.png"
    solver.plot_residuals(output_path=output_path)

    assert output_path.exists()
