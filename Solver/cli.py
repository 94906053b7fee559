"""Meles Solver CLI.

This command-line interface sets up a CEED benchmark problem (BP1-BP6) as a matrix-free libCEED operator and
solves a manufactured system with a PETSc Krylov method.

Subcommands:
- bps: Build the benchmark operator and run the solve.

Example usage:
    # BP1 with the default settings (order 3, one extra quadrature point, 3x3x3 box)
    python -m Solver bps --problem bp1

    # BP3 from a TOML file, overriding the order and plotting the residual history
    python -m Solver -p bps --config config_files/bp3.toml --order 4 --output_path out/bp3

Note that the above commands can be parallelized using 'mpirun -n <number_of_processors> <command>'.
Additional PETSc options (e.g., -ksp_view) are read from the PETSc options database.
"""

import argparse
import logging
from dataclasses import replace
from pathlib import Path

from petsc4py import PETSc

from config import BenchmarkConfig, load_benchmark_config
from FEM.problems import ProblemId
from lib.loggingutils import log_global, setup_logging
from Solver.bps import BenchmarkProblem
from Solver.linear import BenchmarkSolver

logger: logging.Logger = logging.getLogger(__name__)


def _build_config(args: argparse.Namespace) -> BenchmarkConfig:
    """Merge the optional config file with command-line overrides."""
    config = load_benchmark_config(args.config.resolve()) if args.config else BenchmarkConfig()
    overrides = {
        "problem": args.problem.value if args.problem else None,
        "order": args.order,
        "q_extra": args.qextra,
        "ceed_resource": args.ceed,
        "faces": tuple(args.faces) if args.faces else None,
    }
    return replace(config, **{k: v for k, v in overrides.items() if v is not None})


def run_bps(args: argparse.Namespace) -> None:
    """Set up and solve a benchmark problem."""
    config = _build_config(args)
    problem = BenchmarkProblem(config)
    solver = BenchmarkSolver(problem)
    _, report = solver.solve()

    log_global(
        logger,
        logging.INFO,
        "%s: %d DOFs, %d iterations, relative error %.3e",
        problem.problem_id.name,
        report.global_dofs,
        report.iterations,
        report.relative_error,
    )
    if args.plot:
        output_path = args.output_path.resolve()
        solver.plot_residuals(output_path=output_path / f"{problem.problem_id.value}_residuals.png")
    if not report.converged:
        raise RuntimeError(f"Solver did not converge (reason {report.converged_reason}).")


def main() -> None:
    """Meles Solver CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Meles matrix-free benchmark-problem solver",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging"
    )
    parser.add_argument(
        "-p", "--plot", action="store_true", help="Plot the residual history"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # bps
    bps = subparsers.add_parser("bps", help="Solve a CEED benchmark problem")
    bps.add_argument("--config", type=Path, help="Run configuration TOML")
    bps.add_argument(
        "--problem",
        type=ProblemId.from_string,
        choices=list(ProblemId),
        help="Benchmark problem (overrides the config file)",
    )
    bps.add_argument("--order", type=int, help="Polynomial order of the solution basis")
    bps.add_argument("--qextra", type=int, help="Extra quadrature points per direction")
    bps.add_argument("--ceed", type=str, help="libCEED resource, e.g. /cpu/self")
    bps.add_argument("--faces", type=int, nargs=3, metavar=("NX", "NY", "NZ"), help="Cells per direction")
    bps.add_argument(
        "--output_path",
        type=Path,
        default=Path("out"),
        help="Output directory",
    )

    args, petsc_args = parser.parse_known_args()
    if petsc_args:
        PETSc.Options().insertString(" ".join(petsc_args))
    setup_logging(args.verbose, output_path=args.output_path if args.command == "bps" else None)

    try:
        if args.command == "bps":
            run_bps(args)
        else:
            parser.error(f"Unknown command '{args.command}'")
    except Exception as e:
        log_global(logger, logging.ERROR, "CLI execution error: %s", e)
        raise SystemExit(1)
