"""
Computes 2D Delaunay triangulations by incremental insertion into a quad-edge subdivision.

This module provides:
- `extract_sites`: normalizes caller input (tensors, coordinate sequences or
  lists of line-like tensor parts) into `SiteCoordinate` records.
- `IncrementalDelaunayTriangulator`: the Guibas-Stolfi insertion algorithm.
  Each site is located by a walk over the mesh, merged with an existing
  vertex if it falls within the subdivision tolerance, and otherwise inserted
  by splitting its triangle (or the edge it lies on) and restoring the
  Delaunay property by edge flips.
- `triangulate_sites`: builds a fresh subdivision for a list of sites.
- `delaunay_triangle_vertices`: the triangles of the sites alone, including
  hull triangles the frame mesh cannot hold.
- `DelaunayTriangulationBuilder` and `delaunay_triangulation_2d`: tensor
  front ends returning triangles as indices into the input points.

All geometric decisions go through the exact predicates in
`robust_predicates.py`, so collinear and cocircular input is handled
consistently.
"""
import math
import numbers
from typing import NamedTuple

import structlog
import torch

from .geometry_core import Envelope, monotone_chain_2d
from .quadedge_subdivision import QuadEdgeSubdivision
from .robust_predicates import in_circle, orientation

logger = structlog.get_logger()


class SiteCoordinate(NamedTuple):
    """A site extracted from caller input. `index` is its position in the input."""
    x: float
    y: float
    z: float
    index: int


def _is_number(value) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)

def _coordinate_rows(part) -> list:
    """Converts one input part into a list of `[x, y]` or `[x, y, z]` rows."""
    if isinstance(part, torch.Tensor):
        if part.numel() == 0:
            return []
        if part.ndim == 1:
            part = part.unsqueeze(0)
        if part.ndim != 2 or part.shape[1] not in (2, 3):
            raise ValueError(f"Site tensors must have shape (N, 2), (N, 3), (2,) or (3,); got {tuple(part.shape)}.")
        return part.to(torch.float64).tolist()

    part = list(part)
    if not part:
        return []
    if all(_is_number(v) for v in part):
        part = [part] # A single coordinate
    rows = []
    for coord in part:
        coord = list(coord)
        if len(coord) not in (2, 3) or not all(_is_number(v) for v in coord):
            raise ValueError(f"Each site must be a sequence of 2 or 3 numbers; got {coord!r}.")
        rows.append([float(v) for v in coord])
    return rows

def extract_sites(geometry) -> list[SiteCoordinate]:
    """
    Normalizes site input into a flat list of `SiteCoordinate` records.

    Accepted forms:
    - a tensor of shape (N, 2) or (N, 3), or a single coordinate (2,) / (3,);
    - a sequence of coordinate tuples, or a single tuple of numbers;
    - a sequence of tensors (e.g. the parts of a multi-line), whose rows are
      concatenated in order.

    Args:
        geometry: Site input in one of the forms above. `None` means no sites.

    Returns:
        list[SiteCoordinate]: Sites in input order; `z` is NaN when absent.

    Raises:
        ValueError: On malformed shapes or non-finite coordinates.
    """
    if geometry is None:
        return []
    if isinstance(geometry, torch.Tensor):
        rows = _coordinate_rows(geometry)
    else:
        parts = list(geometry)
        if parts and all(isinstance(p, torch.Tensor) for p in parts):
            rows = [row for p in parts for row in _coordinate_rows(p)]
        else:
            rows = _coordinate_rows(parts)

    sites = []
    for index, row in enumerate(rows):
        x, y = row[0], row[1]
        if not (math.isfinite(x) and math.isfinite(y)):
            raise ValueError(f"Site {index} has non-finite coordinates ({x}, {y}).")
        z = row[2] if len(row) == 3 else math.nan
        sites.append(SiteCoordinate(x, y, z, index))
    return sites


class IncrementalDelaunayTriangulator:
    """
    Inserts sites one at a time into a `QuadEdgeSubdivision`, keeping it Delaunay.

    Args:
        subdivision (QuadEdgeSubdivision): The mesh to insert into. Every site
            must lie inside the envelope the subdivision was built from.
    """

    def __init__(self, subdivision: QuadEdgeSubdivision):
        self._subdiv = subdivision
        self.merged_count = 0
        self.flip_count = 0

    @property
    def subdivision(self) -> QuadEdgeSubdivision:
        return self._subdiv

    def insert_sites(self, sites) -> list[int]:
        """Inserts `(x, y[, z])` coordinates or `SiteCoordinate`s in order; returns their vertex ids."""
        vertex_ids = []
        for site in sites:
            z = site[2] if len(site) > 2 else math.nan
            vertex_ids.append(self.insert_site(site[0], site[1], z))
        return vertex_ids

    def _matching_vertex(self, triangle, p) -> int | None:
        subdiv = self._subdiv
        best, best_dist = None, math.inf
        for e in triangle:
            v = subdiv.orig(e)
            if subdiv.is_frame_vertex(v) or not subdiv.matches_vertex(v, p):
                continue
            vx, vy = subdiv.vertex_xy(v)
            d = math.hypot(vx - p[0], vy - p[1])
            if d < best_dist:
                best, best_dist = v, d
        if best is not None or subdiv.tolerance <= 0.0:
            return best

        # Nearest vertex may lie outside the located triangle.
        start_edge = None
        for e in triangle:
            v = subdiv.orig(e)
            if subdiv.is_frame_vertex(v):
                continue
            vx, vy = subdiv.vertex_xy(v)
            d = math.hypot(vx - p[0], vy - p[1])
            if d < best_dist:
                start_edge, best_dist = e, d
        if start_edge is None:
            return None
        nearest, dist = subdiv.find_nearest_vertex(p, subdiv.orig(start_edge), start_edge)
        return nearest if dist < subdiv.tolerance else None

    def insert_site(self, x: float, y: float, z: float = math.nan) -> int:
        """
        Inserts one site and returns the id of the vertex that represents it.

        If the site matches an existing vertex (exactly, or closer than the
        subdivision tolerance) no topology is created and that vertex id is
        returned.

        Raises:
            ValueError: If the site lies outside the subdivision envelope.
            InternalTopologyError: If the site cannot be located in the mesh.
        """
        subdiv = self._subdiv
        p = (float(x), float(y))
        if not subdiv.envelope.contains_point(*p):
            raise ValueError(f"Site ({x}, {y}) lies outside the subdivision envelope {subdiv.envelope}.")

        e = subdiv.locate(*p)
        triangle = (e, subdiv.lnext(e), subdiv.lprev(e))
        existing = self._matching_vertex(triangle, p)
        if existing is not None:
            self.merged_count += 1
            logger.debug("Merged site into existing vertex", x=p[0], y=p[1], vertex=existing)
            return existing

        on_edge = False
        for edge in triangle:
            if subdiv.is_on_edge(edge, p) and subdiv.can_split_edge(edge, p):
                e, on_edge = edge, True
                break

        v = subdiv.add_vertex(p[0], p[1], z)
        if on_edge:
            e = subdiv.oprev(e)
            subdiv.delete_edge(subdiv.onext(e))

        # Connect the new vertex to every vertex of the enclosing polygon.
        base = subdiv.make_edge(subdiv.orig(e), v)
        subdiv.splice(base, e)
        start = base
        while True:
            base = subdiv.connect(e, subdiv.sym(base))
            e = subdiv.oprev(base)
            if subdiv.lnext(e) == start:
                break

        p_v = subdiv.vertex_xy(v)
        while True:
            t = subdiv.oprev(e)
            apex = subdiv.vertex_xy(subdiv.dest(t))
            if (subdiv.right_of(apex, e)
                    and in_circle(subdiv.vertex_xy(subdiv.orig(e)), apex, subdiv.vertex_xy(subdiv.dest(e)), p_v)):
                subdiv.swap(e)
                self.flip_count += 1
                e = subdiv.oprev(e)
            elif subdiv.onext(e) == start:
                break
            else:
                e = subdiv.lprev(subdiv.onext(e))
        return v


def insertion_order(sites: list[SiteCoordinate]) -> list[int]:
    """Indices of `sites` in the order they are inserted: by (x, y), ties by input position."""
    return sorted(range(len(sites)), key=lambda i: (sites[i].x, sites[i].y, i))

def triangulate_sites(sites: list[SiteCoordinate], envelope: Envelope, tolerance: float = 0.0):
    """
    Builds the Delaunay subdivision of `sites` inside a frame around `envelope`.

    Sites are inserted in `insertion_order`, which keeps consecutive locate
    walks short. The site inserted first for a vertex creates it and fixes its
    coordinates. Exact duplicates keep input order, but a site merged by
    tolerance may precede that creator in the input.

    Returns:
        Tuple[QuadEdgeSubdivision, list[int], int]:
            - subdivision: the triangulated mesh.
            - site_vertices: vertex id for each site, indexed like `sites`.
            - merged_count: number of sites merged into an earlier vertex.
    """
    subdiv = QuadEdgeSubdivision(envelope, tolerance)
    triangulator = IncrementalDelaunayTriangulator(subdiv)
    site_vertices = [-1] * len(sites)
    for i in insertion_order(sites):
        site = sites[i]
        site_vertices[i] = triangulator.insert_site(site.x, site.y, site.z)
    logger.debug("Inserted sites", site_count=len(sites), flip_count=triangulator.flip_count,
                 merged_count=triangulator.merged_count)
    return subdiv, site_vertices, triangulator.merged_count


def _adjacent_apex(coords: dict, a: int, b: int) -> int | None:
    """Vertex completing the Delaunay triangle left of the Delaunay edge a -> b."""
    pa, pb = coords[a], coords[b]
    apex = None
    for v, pv in coords.items():
        if orientation(pa, pb, pv) <= 0:
            continue
        # Circles through a and b are nested on the left side, so the smallest wins.
        if apex is None or in_circle(pa, pb, coords[apex], pv):
            apex = v
    return apex

def delaunay_triangle_vertices(subdiv: QuadEdgeSubdivision) -> list[tuple[int, int, int]]:
    """
    Lists the Delaunay triangles of the site vertices of `subdiv` (CCW).

    Mesh triangles without frame vertices are Delaunay for the sites alone.
    A triangle along the convex hull whose circumcircle reaches past a frame
    vertex is absent from the mesh, which holds frame triangles there instead.
    Those are recovered by walking inwards from every hull edge that has no
    triangle on its inner side.

    Returns:
        list[tuple[int, int, int]]: Mesh triangles first, then recovered ones.
    """
    triangles = subdiv.get_triangle_vertices(include_frame=False)
    vertices = subdiv.get_vertices(include_frame=False)
    if len(vertices) < 3:
        return triangles
    coords = {v: subdiv.vertex_xy(v) for v in vertices}
    covered = {(t[i], t[(i + 1) % 3]) for t in triangles for i in range(3)}
    hull = [vertices[i] for i in monotone_chain_2d([coords[v] for v in vertices])]
    pending = [(hull[i], hull[(i + 1) % len(hull)]) for i in range(len(hull))]
    recovered = []
    while pending:
        a, b = pending.pop()
        if (a, b) in covered:
            continue
        c = _adjacent_apex(coords, a, b)
        if c is None:
            continue
        recovered.append((a, b, c))
        covered.update(((a, b), (b, c), (c, a)))
        pending.extend(((c, b), (a, c)))
    if recovered:
        logger.debug("Recovered hull triangles", count=len(recovered))
    return triangles + recovered


class DelaunayTriangulationBuilder:
    """
    Builds a Delaunay triangulation of a set of sites.

    Sites within `tolerance` of another site are merged with it. The resulting
    triangles are reported as indices into the input; each vertex is named by
    the site that created it, so the reported index always carries the
    vertex's coordinates.
    """

    def __init__(self):
        self._sites: list[SiteCoordinate] = []
        self._tolerance = 0.0
        self._subdiv: QuadEdgeSubdivision | None = None
        self._site_vertices: list[int] = []
        self._vertex_site_index: dict[int, int] = {}
        self._triangles: list[tuple[int, int, int]] = []
        self._device = None

    def set_sites(self, geometry) -> None:
        self._sites = extract_sites(geometry)
        self._device = geometry.device if isinstance(geometry, torch.Tensor) else None
        self._subdiv = None

    def set_tolerance(self, tolerance: float) -> None:
        tolerance = float(tolerance)
        if not math.isfinite(tolerance) or tolerance < 0.0:
            raise ValueError(f"tolerance must be a finite non-negative number, got {tolerance}.")
        self._tolerance = tolerance
        self._subdiv = None

    def _create(self) -> None:
        if self._subdiv is not None:
            return
        envelope = Envelope.from_points(self._sites) if self._sites else Envelope(0.0, 0.0, 0.0, 0.0)
        self._subdiv, self._site_vertices, merged = triangulate_sites(self._sites, envelope, self._tolerance)
        self._vertex_site_index = {}
        for site_index in insertion_order(self._sites):
            self._vertex_site_index.setdefault(self._site_vertices[site_index], site_index)
        self._triangles = delaunay_triangle_vertices(self._subdiv)
        logger.info("Built Delaunay triangulation", site_count=len(self._sites),
                    vertex_count=len(self._vertex_site_index), merged_count=merged)

    def get_subdivision(self) -> QuadEdgeSubdivision:
        self._create()
        return self._subdiv

    @property
    def site_vertices(self) -> list[int]:
        """Vertex id of each input site."""
        self._create()
        return list(self._site_vertices)

    def get_triangles(self) -> torch.Tensor:
        """Returns the triangles as a `(M, 3)` long tensor of input indices (CCW)."""
        self._create()
        rows = [[self._vertex_site_index[v] for v in tri] for tri in self._triangles]
        if not rows:
            return torch.empty((0, 3), dtype=torch.long, device=self._device)
        return torch.tensor(rows, dtype=torch.long, device=self._device)

    def get_edges(self) -> torch.Tensor:
        """Returns the Delaunay edges as a `(E, 2)` long tensor of input indices."""
        self._create()
        subdiv = self._subdiv
        pairs = [(subdiv.orig(e), subdiv.dest(e)) for e in subdiv.get_primary_edges(include_frame=False)]
        seen = {frozenset(pair) for pair in pairs}
        for tri in self._triangles:
            for pair in ((tri[0], tri[1]), (tri[1], tri[2]), (tri[2], tri[0])):
                if frozenset(pair) not in seen:
                    seen.add(frozenset(pair))
                    pairs.append(pair)
        rows = [[self._vertex_site_index[a], self._vertex_site_index[b]] for a, b in pairs]
        if not rows:
            return torch.empty((0, 2), dtype=torch.long, device=self._device)
        return torch.tensor(rows, dtype=torch.long, device=self._device)


def delaunay_triangulation_2d(points: torch.Tensor, tolerance: float = 0.0) -> torch.Tensor:
    """
    Computes the 2D Delaunay triangulation of a set of points.

    Args:
        points (torch.Tensor): Tensor of shape (N, 2) representing N points in 2D.
        tolerance (float, optional): Points closer than this are merged and
            share the index of the point whose coordinates the merged
            vertex keeps, the first in (x, y) order. Defaults to 0.0 (only exact
            duplicates merge).

    Returns:
        torch.Tensor: Tensor of shape (M, 3) of M Delaunay triangles, each row
                      holding indices into `points` in counter-clockwise order.
                      Returns an empty `(0, 3)` tensor if fewer than three
                      non-collinear distinct points are given.
    """
    if points.ndim != 2 or points.shape[1] < 2:
        raise ValueError("Input points must be a tensor of shape (N, 2).")
    builder = DelaunayTriangulationBuilder()
    builder.set_sites(points[:, :2])
    builder.set_tolerance(tolerance)
    return builder.get_triangles()
