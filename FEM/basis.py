"""Meles FEM tensor-product bases."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import libceed

from lib.loggingutils import log_global

from .errors import InvalidBasis
from .problems import QuadratureMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Basis:
    """H1 Lagrange tensor-product basis and its quadrature rule."""

    dimension: int
    """Topological dimension."""
    num_components: int
    """Field components interpolated at once."""
    node_order: int
    """Nodes per direction (P = polynomial order + 1)."""
    quadrature_order: int
    """Quadrature points per direction (Q)."""
    quadrature_mode: QuadratureMode
    """Quadrature point family."""
    ceed_basis: Any
    """libCEED basis handle."""

    @property
    def num_nodes(self) -> int:
        """Nodes per element."""
        return self.node_order**self.dimension

    @property
    def num_quadrature_points(self) -> int:
        """Quadrature points per element."""
        return self.quadrature_order**self.dimension


def build_basis(
    ceed: libceed.Ceed,
    dimension: int,
    num_components: int,
    node_order: int,
    quadrature_order: int,
    quadrature_mode: QuadratureMode = QuadratureMode.GAUSS,
) -> Basis:
    """Build a tensor-product H1 Lagrange basis.

    Raises InvalidBasis if the parameters do not describe a usable basis. In particular, under-integrated rules
    (fewer quadrature points than nodes per direction) are rejected.
    """
    if not 1 <= dimension <= 3:
        raise InvalidBasis(f"Dimension must be 1, 2 or 3, got {dimension}.")
    if num_components < 1:
        raise InvalidBasis(f"Number of components must be positive, got {num_components}.")
    if node_order < 2:
        raise InvalidBasis(f"Lagrange bases need at least 2 nodes per direction, got {node_order}.")
    if quadrature_order < node_order:
        raise InvalidBasis(
            f"Quadrature order ({quadrature_order}) must not be below the node order ({node_order})."
        )
    if quadrature_mode is QuadratureMode.GAUSS_LOBATTO and quadrature_order < 2:
        raise InvalidBasis("Gauss-Lobatto rules need at least 2 points per direction.")

    ceed_basis = ceed.BasisTensorH1Lagrange(
        dimension, num_components, node_order, quadrature_order, quadrature_mode.to_ceed()
    )
    log_global(
        logger,
        logging.DEBUG,
        "Basis: dim=%d, ncomp=%d, P=%d, Q=%d (%s)",
        dimension,
        num_components,
        node_order,
        quadrature_order,
        quadrature_mode,
    )
    return Basis(
        dimension=dimension,
        num_components=num_components,
        node_order=node_order,
        quadrature_order=quadrature_order,
        quadrature_mode=quadrature_mode,
        ceed_basis=ceed_basis,
    )
