"""Meles Linear Solver.

Solves a benchmark system A u = b with a Krylov method on the matrix-free operator shell. The right-hand side is
manufactured from the discrete interpolant u* of the sinusoidal boundary function (b = A u*), so the converged
solution must reproduce u* up to the solver tolerance.
"""

import logging
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path

import matplotlib.pyplot as plt
from matplotlib.ticker import MaxNLocator
from mpi4py import MPI

from config import SolverConfig
from FEM.bcs import boundary_function_diff
from FEM.utils import iPETScMatrix, iPETScVector
from lib.loggingutils import log_global, log_rank
from Solver.bps import BenchmarkProblem
from Solver.utils import KSPType, PreconditionerType, iKSP

logger = logging.getLogger(__name__)
plt.rcParams.update({"font.family": "serif", "font.size": 10})


@dataclass(frozen=True)
class SolveReport:
    """Outcome of a benchmark solve."""

    iterations: int
    """Krylov iterations."""
    residual_norm: float
    """Final residual norm, as reported by the KSP."""
    relative_error: float
    """||u - u*|| / ||u*||."""
    converged_reason: int
    """PETSc converged reason (positive on convergence)."""
    solve_time: float
    """Wall time of the solve, in seconds."""
    global_dofs: int
    """Size of the system."""
    residual_history: list[float] = field(default_factory=list)
    """Residual norm at each iteration."""

    @property
    def converged(self) -> bool:
        """Whether the KSP reported convergence."""
        return self.converged_reason > 0

    @property
    def dofs_per_second(self) -> float:
        """Throughput, in DOF-iterations per second (the CEED benchmark metric)."""
        if self.solve_time <= 0.0:
            return 0.0
        return self.global_dofs * max(self.iterations, 1) / self.solve_time


class BenchmarkSolver:
    """Krylov solver for a benchmark problem."""

    def __init__(self, problem: BenchmarkProblem, config: SolverConfig | None = None) -> None:
        """Initialize."""
        self.problem = problem
        self.config = config or problem.config.solver
        self._res_hist: list[float] = []
        self._A: iPETScMatrix | None = None

    @property
    def A(self) -> iPETScMatrix:
        """Operator shell, created on first use."""
        if self._A is None:
            self._A = self.problem.mat_shell()
        return self._A

    def exact_solution(self) -> iPETScVector:
        """Interpolant of the boundary function on the unconstrained DOFs."""
        space = self.problem.space
        return iPETScVector(
            space.interpolate(partial(boundary_function_diff, num_components=space.num_components))
        )

    def _monitor(self, ksp, its: int, rnorm: float) -> None:
        self._res_hist.append(float(rnorm))

    def solve(self, *, enable_monitor: bool = True) -> tuple[iPETScVector, SolveReport]:
        """Solve A u = A u* and return the solution with its report."""
        ksp_type = KSPType.from_string(self.config.ksp_type)
        pc_type = PreconditionerType.from_string(self.config.pc_type)
        log_global(logger, logging.INFO, "%s/%s solve started.", ksp_type.name, pc_type.name)

        u_exact = self.exact_solution()
        b = self.A @ u_exact
        u = self.A.create_vector_right()
        u.zero_all_entries()

        log_rank(logger, logging.DEBUG, "Configuring iKSP for %s", ksp_type.name)
        solver = iKSP(self.A, comm=self.A.comm)
        solver.set_type(ksp_type)
        solver.set_preconditioner(pc_type)
        solver.set_tolerances(tol=self.config.atol, rtol=self.config.rtol, max_it=self.config.max_it)
        self._res_hist = []
        if enable_monitor:
            solver.set_monitor(self._monitor)
        solver.set_from_options()

        MPI.COMM_WORLD.Barrier()
        t0 = MPI.Wtime()
        solver.solve(b, u)
        t1 = MPI.Wtime()

        error = u - u_exact
        report = SolveReport(
            iterations=solver.get_iteration_number(),
            residual_norm=solver.get_residual_norm(),
            relative_error=error.norm / max(u_exact.norm, 1e-300),
            converged_reason=solver.get_converged_reason(),
            solve_time=t1 - t0,
            global_dofs=self.problem.space.global_size,
            residual_history=list(self._res_hist),
        )
        solver.destroy()

        if not report.converged:
            log_global(
                logger, logging.WARNING, "KSP did not converge (reason %d).", report.converged_reason
            )
        log_global(
            logger,
            logging.INFO,
            "%s solve time: %.3f s, %d iterations, residual %.3e, relative error %.3e, %.3e DOF/s",
            ksp_type.name,
            report.solve_time,
            report.iterations,
            report.residual_norm,
            report.relative_error,
            report.dofs_per_second,
        )
        return u, report

    def get_residual_history(self) -> list[float]:
        """Return the residual history of the last solve."""
        return list(self._res_hist)

    def plot_residuals(
        self,
        *,
        output_path: Path = Path(".") / "ksp_residuals.png",
        title: str | None = None,
    ) -> None:
        """Plot KSP residual history (semi-log) and save to disk."""
        history = self._res_hist
        if not history:
            log_global(logger, logging.WARNING, "Residual history is empty.")
            return
        if MPI.COMM_WORLD.rank != 0:
            return

        fig, ax = plt.subplots(figsize=(6, 3))
        ax.semilogy(history, label="KSP residuals", color="k", linewidth=1.5)
        ax.set_xlabel(r"Iteration, $k$ (-)")
        ax.set_ylabel(r"$\|\mathbf{r}_k\|_{L2}$ (-)")
        ax.set_title(title or self.problem.problem_id.name)
        ax.xaxis.set_major_locator(MaxNLocator(integer=True))
        ax.grid(which="major", linestyle="-", linewidth=0.8)
        ax.minorticks_on()
        ax.grid(which="minor", linestyle=":", color="gray", linewidth=0.5)
        ax.tick_params(which="major", direction="in", length=3, width=0.5)
        ax.tick_params(which="minor", direction="in", length=1.25, width=0.5)
        fig.tight_layout()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=330)
        plt.close(fig)

        log_global(logger, logging.INFO, "KSP residual plot saved to %s", output_path)
