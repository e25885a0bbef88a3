"""
Constructs 2D Voronoi diagrams from Delaunay triangulations.

This module takes a set of input sites, triangulates them with the incremental
quad-edge triangulator from `delaunay_2d.py` and reads the Voronoi diagram off
the dual graph. The Voronoi vertices are the circumcenters of the Delaunay
triangles, and the cell of a site is the ring of circumcenters of the
triangles around it, already in counter-clockwise order.

Cells of hull sites are unbounded. The triangulation is built inside a frame
triangle placed far outside the diagram envelope, so every cell is closed by
circumcenters of frame triangles; these lie outside the envelope and are cut
away when the cells are clipped. Clipping uses `geometry_core.py`:
Sutherland-Hodgman for cells and Liang-Barsky for edges.

Results are produced through a geometry factory (`TensorGeometryFactory` by
default), which controls the dtype and device of the returned tensors.
"""
import math
from dataclasses import dataclass
from typing import Any, NamedTuple

import structlog
import torch

from .delaunay_2d import extract_sites, triangulate_sites
from .geometry_core import DEFAULT_ENVELOPE_MARGIN_FACTOR, Envelope, clip_ring_2d, clip_segment_2d
from .quadedge_subdivision import InternalTopologyError, QuadEdgeSubdivision

logger = structlog.get_logger()


class InvalidOrderedInputError(ValueError):
    """
    Raised when an ordered diagram is requested for sites that merge.

    An ordered diagram returns cell `i` for input site `i`, which is only
    possible when every site becomes a distinct vertex.
    """

    def __init__(self, site_count: int, vertex_count: int):
        self.site_count = site_count
        self.vertex_count = vertex_count
        super().__init__(
            f"Cannot build an ordered Voronoi diagram: {site_count} sites collapsed to "
            f"{vertex_count} distinct vertices (repeated points or points within tolerance)."
        )


class VoronoiConfig(NamedTuple):
    """Options controlling how a Voronoi diagram is built."""
    tolerance: float = 0.0
    ordered: bool = False
    margin_factor: float = DEFAULT_ENVELOPE_MARGIN_FACTOR
    clip_envelope: Envelope | None = None


@dataclass(frozen=True)
class DiagramResult:
    """
    Outcome of a diagram computation: either the geometries or the error.

    Never holds a partial result.
    """
    geometries: Any = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self):
        """Returns the geometries, or raises the stored error."""
        if self.error is not None:
            raise self.error
        return self.geometries


class TensorGeometryFactory:
    """
    Creates the output geometries of the diagram builder as PyTorch tensors.

    Args:
        dtype (torch.dtype, optional): Floating dtype of the created tensors.
            Defaults to torch.float64.
        device (torch.device | str | None, optional): Device of the created tensors.
    """

    def __init__(self, dtype: torch.dtype = torch.float64, device=None):
        if not dtype.is_floating_point:
            raise ValueError(f"Geometry dtype must be a floating point type, got {dtype}.")
        self.dtype = dtype
        self.device = device

    def create_polygon(self, ring) -> torch.Tensor:
        """Returns an open ring of `(x, y)` tuples as a `(K, 2)` tensor; empty rings give `(0, 2)`."""
        if not ring:
            return torch.empty((0, 2), dtype=self.dtype, device=self.device)
        return torch.tensor(ring, dtype=self.dtype, device=self.device)

    def create_polygon_collection(self, polygons) -> list[torch.Tensor]:
        return list(polygons)

    def create_line_segment(self, p0, p1) -> torch.Tensor:
        return torch.tensor([p0, p1], dtype=self.dtype, device=self.device)

    def create_segment_collection(self, segments) -> torch.Tensor:
        """Stacks `(2, 2)` segments into an `(E, 2, 2)` tensor."""
        segments = list(segments)
        if not segments:
            return torch.empty((0, 2, 2), dtype=self.dtype, device=self.device)
        return torch.stack(segments)


def _as_envelope(envelope) -> Envelope | None:
    if envelope is None or isinstance(envelope, Envelope):
        return envelope
    if isinstance(envelope, torch.Tensor):
        return Envelope.from_bounds(envelope)
    min_x, max_x, min_y, max_y = (float(v) for v in envelope)
    if not (min_x <= max_x and min_y <= max_y):
        raise ValueError("Envelope min must be less than or equal to max for each dimension.")
    return Envelope(min_x, max_x, min_y, max_y)

def _check_tolerance(tolerance: float) -> float:
    tolerance = float(tolerance)
    if not math.isfinite(tolerance) or tolerance < 0.0:
        raise ValueError(f"tolerance must be a finite non-negative number, got {tolerance}.")
    return tolerance


class VoronoiDiagramBuilder:
    """
    Builds the Voronoi diagram of a set of sites, clipped to a finite envelope.

    The diagram envelope is the envelope of the sites grown on every side by
    `margin_factor` times its largest side, enlarged to include the clip
    envelope if one is set. Typical use:

        builder = VoronoiDiagramBuilder()
        builder.set_sites(points)
        polygons = builder.get_diagram()

    Args:
        geometry_factory (TensorGeometryFactory | None, optional): Creates the
            output tensors. Defaults to float64 tensors on the CPU.
    """

    def __init__(self, geometry_factory: TensorGeometryFactory | None = None):
        self._factory = geometry_factory if geometry_factory is not None else TensorGeometryFactory()
        self._config = VoronoiConfig()
        self._sites = []
        self._subdiv: QuadEdgeSubdivision | None = None
        self._site_vertices: list[int] = []
        self._merged_count = 0
        self._diagram_envelope: Envelope | None = None

    @property
    def config(self) -> VoronoiConfig:
        return self._config

    def set_sites(self, geometry, tolerance: float = 0.0, ordered: bool = False) -> None:
        """
        Sets the sites of the diagram. See `delaunay_2d.extract_sites` for the accepted forms.

        Args:
            geometry: Site coordinates.
            tolerance (float, optional): Sites closer than this are merged.
            ordered (bool, optional): If True, cell `i` of the result belongs to
                input site `i`; merging sites then becomes an error.
        """
        self._sites = extract_sites(geometry)
        self._config = self._config._replace(tolerance=_check_tolerance(tolerance), ordered=bool(ordered))
        self._reset()

    def set_tolerance(self, tolerance: float) -> None:
        self._config = self._config._replace(tolerance=_check_tolerance(tolerance))
        self._reset()

    def set_ordered(self, ordered: bool) -> None:
        self._config = self._config._replace(ordered=bool(ordered))

    def set_clip_envelope(self, envelope) -> None:
        """Sets an envelope the diagram must cover; an `Envelope`, a `(2, 2)` bounds tensor or None."""
        self._config = self._config._replace(clip_envelope=_as_envelope(envelope))
        self._reset()

    def set_margin_factor(self, margin_factor: float) -> None:
        margin_factor = float(margin_factor)
        if not math.isfinite(margin_factor) or margin_factor < 0.0:
            raise ValueError(f"margin_factor must be a finite non-negative number, got {margin_factor}.")
        self._config = self._config._replace(margin_factor=margin_factor)
        self._reset()

    def _reset(self) -> None:
        self._subdiv = None
        self._diagram_envelope = None

    def _compute_diagram_envelope(self) -> Envelope:
        config = self._config
        if self._sites:
            site_env = Envelope.from_points(self._sites)
            envelope = site_env.expand_by(config.margin_factor * site_env.max_extent)
        else:
            envelope = Envelope(0.0, 0.0, 0.0, 0.0)
        if config.clip_envelope is not None:
            envelope = envelope.expand_to_include(config.clip_envelope) if self._sites else config.clip_envelope
        return envelope

    @property
    def diagram_envelope(self) -> Envelope:
        if self._diagram_envelope is None:
            self._diagram_envelope = self._compute_diagram_envelope()
        return self._diagram_envelope

    def build_diagram(self) -> QuadEdgeSubdivision:
        """
        Triangulates the sites and computes the circumcenter of every face.

        The result is cached until the sites or an option affecting the
        triangulation changes.
        """
        if self._subdiv is not None:
            return self._subdiv
        subdiv, self._site_vertices, self._merged_count = triangulate_sites(
            self._sites, self.diagram_envelope, self._config.tolerance
        )
        subdiv.compute_face_centers()
        self._subdiv = subdiv
        return subdiv

    def get_subdivision(self) -> QuadEdgeSubdivision:
        return self.build_diagram()

    @property
    def vertex_count(self) -> int:
        """Number of distinct (non-frame) vertices the sites produced."""
        return len(self.build_diagram().get_vertices())

    def _cell_vertices(self) -> list[int]:
        """Vertex ids in output order: the order in which sites first reach each vertex."""
        seen = set()
        vertices = []
        for v in self._site_vertices:
            if v not in seen:
                seen.add(v)
                vertices.append(v)
        return vertices

    def _diagram_polygons(self, subdiv: QuadEdgeSubdivision) -> list[torch.Tensor]:
        envelope = self.diagram_envelope
        edge_of_vertex = {subdiv.orig(e): e for e in subdiv.get_vertex_unique_edges()}
        polygons = []
        for v in self._cell_vertices():
            ring = clip_ring_2d(subdiv.voronoi_cell_ring(edge_of_vertex[v]), envelope)
            polygons.append(self._factory.create_polygon(ring))
        return self._factory.create_polygon_collection(polygons)

    def _diagram_edges(self, subdiv: QuadEdgeSubdivision) -> torch.Tensor:
        envelope = self.diagram_envelope
        segments = []
        for e in subdiv.get_primary_edges(include_frame=False):
            clipped = clip_segment_2d(subdiv.left_face_center(e), subdiv.left_face_center(subdiv.sym(e)), envelope)
            if clipped is not None:
                segments.append(self._factory.create_line_segment(*clipped))
        return self._factory.create_segment_collection(segments)

    def compute(self, edges_only: bool = False) -> DiagramResult:
        """
        Computes the diagram as polygons (default) or as edges.

        Returns:
            DiagramResult: On success `geometries` is a list of `(K, 2)`
            polygon tensors, or a `(E, 2, 2)` edge tensor when `edges_only`.
            Fewer than two distinct sites give an empty result. Ordered
            requests on merging input and topology failures are returned as
            `error` instead of raised.
        """
        empty = (self._factory.create_segment_collection([]) if edges_only
                 else self._factory.create_polygon_collection([]))
        try:
            subdiv = self.build_diagram()
            vertex_count = len(subdiv.get_vertices())
            if self._config.ordered and vertex_count != len(self._sites):
                raise InvalidOrderedInputError(len(self._sites), vertex_count)
            if vertex_count <= 1:
                geometries = empty
            elif edges_only:
                geometries = self._diagram_edges(subdiv)
            else:
                geometries = self._diagram_polygons(subdiv)
        except (InvalidOrderedInputError, InternalTopologyError) as exc:
            logger.warning("Voronoi diagram failed", error=str(exc), site_count=len(self._sites))
            return DiagramResult(error=exc)

        logger.info("Built Voronoi diagram", site_count=len(self._sites), vertex_count=vertex_count,
                    merged_count=self._merged_count, edges_only=edges_only,
                    geometry_count=len(geometries))
        return DiagramResult(geometries=geometries)

    def get_diagram(self) -> list[torch.Tensor]:
        """
        Returns the Voronoi cells as counter-clockwise `(K, 2)` open-ring tensors.

        There is one cell per distinct site, clipped to `diagram_envelope`. In
        ordered mode cell `i` contains input site `i`; otherwise cells follow the
        first occurrence of each site in the input.

        Raises:
            InvalidOrderedInputError: If ordered mode is on and sites merged.
            InternalTopologyError: If the triangulation fails.
        """
        return self.compute(edges_only=False).unwrap()

    def get_diagram_edges(self) -> torch.Tensor:
        """
        Returns the Voronoi edges as an `(E, 2, 2)` tensor of segments.

        Only edges dual to a Delaunay edge between two sites are reported, each
        clipped to `diagram_envelope`; edges that clip away are dropped.
        """
        return self.compute(edges_only=True).unwrap()


def compute_voronoi_diagram_2d(points, tolerance: float = 0.0, ordered: bool = False,
                               edges_only: bool = False, clip_envelope=None):
    """
    Computes the clipped 2D Voronoi diagram of a set of points.

    Args:
        points: Sites as a `(N, 2)` / `(N, 3)` tensor or any form accepted by
            `delaunay_2d.extract_sites`.
        tolerance (float, optional): Sites closer than this are merged. Defaults to 0.0.
        ordered (bool, optional): Return cell `i` for input site `i`. Defaults to False.
        edges_only (bool, optional): Return edges instead of cells. Defaults to False.
        clip_envelope (optional): `Envelope` or `(2, 2)` bounds tensor the diagram
            must cover in addition to the default envelope.

    Returns:
        list[torch.Tensor] | torch.Tensor: Cells as `(K, 2)` tensors, or an
        `(E, 2, 2)` edge tensor. Tensor input keeps its floating dtype and device.

    Raises:
        InvalidOrderedInputError: If `ordered` and sites merge.
    """
    if isinstance(points, torch.Tensor) and points.is_floating_point():
        factory = TensorGeometryFactory(dtype=points.dtype, device=points.device)
    else:
        factory = TensorGeometryFactory()
    builder = VoronoiDiagramBuilder(geometry_factory=factory)
    builder.set_sites(points, tolerance=tolerance, ordered=ordered)
    builder.set_clip_envelope(clip_envelope)
    if edges_only:
        return builder.get_diagram_edges()
    return builder.get_diagram()
