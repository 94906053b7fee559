"""Meles configuration."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomllib


def read_toml(path: Path) -> dict[str, Any]:
    """Read TOML file."""
    if not path.exists():
        raise FileNotFoundError(f"TOML config file not found at '{path}'")
    with path.open("rb") as p:
        return tomllib.load(p)


@dataclass(frozen=True)
class SolverConfig:
    """Krylov solver settings."""

    ksp_type: str = "cg"
    """PETSc KSP type."""
    pc_type: str = "jacobi"
    """PETSc preconditioner type (only diagonal-based ones work matrix-free)."""
    rtol: float = 1e-10
    """Relative tolerance."""
    atol: float = 1e-50
    """Absolute tolerance."""
    max_it: int = 1000
    """Maximum number of iterations."""


@dataclass(frozen=True)
class BenchmarkConfig:
    """Configured benchmark-problem run."""

    problem: str = "bp1"
    """Benchmark problem id (bp1 ... bp6)."""
    order: int = 3
    """Polynomial order of the solution basis."""
    q_extra: int = 1
    """Number of quadrature points per direction beyond order + 1."""
    ceed_resource: str = "/cpu/self"
    """libCEED backend resource."""
    faces: tuple[int, int, int] = (3, 3, 3)
    """Number of cells per direction of the box mesh."""
    lower: tuple[float, float, float] = (0.0, 0.0, 0.0)
    """Lower corner of the box."""
    upper: tuple[float, float, float] = (1.0, 1.0, 1.0)
    """Upper corner of the box."""
    solver: SolverConfig = field(default_factory=SolverConfig)
    """Krylov solver settings."""


def _int(table: dict[str, Any], key: str, default: int) -> int:
    raw = table.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise TypeError(f"'{key}' must be an integer, got {raw!r}.")
    return raw


def _float(table: dict[str, Any], key: str, default: float) -> float:
    raw = table.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise TypeError(f"'{key}' must be a number, got {raw!r}.")
    return float(raw)


def _triple(table: dict[str, Any], key: str, default: tuple, cast: type) -> tuple:
    raw = table.get(key, list(default))
    if not isinstance(raw, list) or len(raw) != 3:
        raise TypeError(f"'{key}' must be a list of three values, got {raw!r}.")
    try:
        return tuple(cast(v) for v in raw)
    except (TypeError, ValueError) as exc:
        raise TypeError(f"'{key}' entries must be of type {cast.__name__}.") from exc


def _table(cfg: dict[str, Any], name: str) -> dict[str, Any]:
    table = cfg.get(name, {})
    if not isinstance(table, dict):
        raise TypeError(f"'{name}' must be a table.")
    return table


def load_benchmark_config(path: Path) -> BenchmarkConfig:
    """Load a benchmark-problem run configuration.

    All tables and keys are optional; missing ones take the defaults of `BenchmarkConfig`.

    Example
    -------
    ````toml
    [Problem]
    name = "bp3"
    order = 3
    q_extra = 1

    [Ceed]
    resource = "/cpu/self"

    [Mesh]
    faces = [3, 3, 3]
    lower = [0.0, 0.0, 0.0]
    upper = [1.0, 1.0, 1.0]

    [Solver]
    ksp_type = "cg"
    pc_type = "jacobi"
    rtol = 1e-10
    max_it = 500
    ````
    """
    cfg = read_toml(path)
    defaults = BenchmarkConfig()
    solver_defaults = SolverConfig()

    problem = _table(cfg, "Problem")
    ceed = _table(cfg, "Ceed")
    mesh = _table(cfg, "Mesh")
    solver = _table(cfg, "Solver")

    name = problem.get("name", defaults.problem)
    if not isinstance(name, str) or not name.strip():
        raise KeyError("'Problem.name' must be a non-empty string.")
    resource = ceed.get("resource", defaults.ceed_resource)
    if not isinstance(resource, str):
        raise TypeError("'Ceed.resource' must be a string.")

    return BenchmarkConfig(
        problem=name.strip().lower(),
        order=_int(problem, "order", defaults.order),
        q_extra=_int(problem, "q_extra", defaults.q_extra),
        ceed_resource=resource,
        faces=_triple(mesh, "faces", defaults.faces, int),
        lower=_triple(mesh, "lower", defaults.lower, float),
        upper=_triple(mesh, "upper", defaults.upper, float),
        solver=SolverConfig(
            ksp_type=str(solver.get("ksp_type", solver_defaults.ksp_type)),
            pc_type=str(solver.get("pc_type", solver_defaults.pc_type)),
            rtol=_float(solver, "rtol", solver_defaults.rtol),
            atol=_float(solver, "atol", solver_defaults.atol),
            max_it=_int(solver, "max_it", solver_defaults.max_it),
        ),
    )
