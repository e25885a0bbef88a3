"""Planar Delaunay triangulation and Voronoi diagrams on a quad-edge subdivision."""
from .delaunay_2d import DelaunayTriangulationBuilder, delaunay_triangulation_2d, extract_sites
from .geometry_core import Envelope
from .quadedge_subdivision import InternalTopologyError, QuadEdgeSubdivision
from .voronoi_from_delaunay import (
    DiagramResult,
    InvalidOrderedInputError,
    TensorGeometryFactory,
    VoronoiConfig,
    VoronoiDiagramBuilder,
    compute_voronoi_diagram_2d,
)
