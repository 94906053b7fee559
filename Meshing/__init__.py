"""Initialize Meles Meshing."""

__author__ = "Ferran de Andres <ferran.de-andres-vert@campus.tu-berlin.de>"

from .core import BOUNDARY_LABEL, BoxMesh
from .utils import Height, MeshLabel

__all__ = [
    "BoxMesh",
    "Height",
    "MeshLabel",
    "BOUNDARY_LABEL",
]
