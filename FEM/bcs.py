"""Meles FEM boundary conditions.

The Poisson benchmark problems (BP3-BP6) fix every degree of freedom on the boundary faces labelled
``marker == 1``. The boundary values, and the manufactured exact solution used to verify solves, come from a smooth
sinusoid that does not vanish on the boundary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from lib.loggingutils import log_global
from Meshing import BOUNDARY_LABEL, BoxMesh

from .errors import MissingLabel

logger = logging.getLogger(__name__)

_PHASE: np.ndarray = np.array([0.0, 1.0, 2.0])
_WAVENUMBER: np.ndarray = np.array([1.0, 2.0, 3.0])


def boundary_function_diff(x: np.ndarray, num_components: int = 1) -> np.ndarray:
    """Evaluate u(x) = sin(pi (c0 + k0 x)) sin(pi (c1 + k1 y)) sin(pi (c2 + k2 z)) at points x of shape (n, 3).

    Every component gets the same value. Returns an array of shape (n, num_components).
    """
    x = np.atleast_2d(np.asarray(x, dtype=float))
    u = np.prod(np.sin(np.pi * (_PHASE + _WAVENUMBER * x)), axis=1)
    return np.repeat(u[:, None], num_components, axis=1)


@dataclass(frozen=True)
class EssentialBoundary:
    """Faces whose degrees of freedom are fixed."""

    label: str = BOUNDARY_LABEL
    """Face label selecting the constrained boundary."""
    value: int = 1
    """Label value selecting the constrained boundary."""


def define_essential_boundary(
    mesh: BoxMesh, enforce: bool, *, label: str = BOUNDARY_LABEL, value: int = 1
) -> EssentialBoundary | None:
    """Return the essential boundary of a benchmark problem, or None if it does not enforce any.

    The default boundary label is created on the fly (all boundary faces marked with `value`). Any other label must
    already exist on the mesh.
    """
    if not enforce:
        return None

    if not mesh.has_label(label):
        if label != BOUNDARY_LABEL:
            raise MissingLabel(label)
        mesh.mark_boundary_faces(value, name=label)

    log_global(logger, logging.DEBUG, "Essential boundary on faces %s=%d", label, value)
    return EssentialBoundary(label=label, value=value)
