"""
Core geometric primitives shared by the triangulation and Voronoi modules.

This module provides foundational functionality used throughout the package:
- Global tolerance and sizing constants (`EPSILON`, `FRAME_SIZE_FACTOR`, ...).
- An axis-aligned `Envelope` type used for site bounds, frames and clipping.
- Polygon clipping against a rectangle (`clip_polygon_2d`, Sutherland-Hodgman).
- Segment clipping against a rectangle (`clip_segment_2d`, Liang-Barsky).
- A convex hull (`monotone_chain_2d`) with exact orientation tests.
- Area and containment helpers for 2D polygons.

Polygons and bounds are exchanged as PyTorch tensors, matching the rest of the
package; internal loops run on Python floats.
"""
import math
from typing import NamedTuple

import torch

from .robust_predicates import orientation

EPSILON = 1e-7 # Global epsilon for float comparisons of output coordinates.

# Frame vertices sit this many envelope extents away from the envelope.
FRAME_SIZE_FACTOR = 10.0

# A site closer than tolerance / EDGE_COINCIDENCE_TOL_FACTOR to an edge splits it.
EDGE_COINCIDENCE_TOL_FACTOR = 1000.0

# Below this relative cross product, circumcenters are computed with exact rationals.
CIRCUMCENTER_EXACT_THRESHOLD = 1e-6

# The diagram envelope is the site envelope grown by this fraction of its largest side.
DEFAULT_ENVELOPE_MARGIN_FACTOR = 1.0


class Envelope(NamedTuple):
    """Axis-aligned rectangle `[min_x, max_x] x [min_y, max_y]`."""
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    @classmethod
    def from_points(cls, coords) -> "Envelope":
        """
        Builds the bounding envelope of an iterable of coordinate tuples.

        Only the first two components of each coordinate are used.

        Raises:
            ValueError: If `coords` is empty.
        """
        xs = []
        ys = []
        for c in coords:
            xs.append(float(c[0]))
            ys.append(float(c[1]))
        if not xs:
            raise ValueError("Cannot build an envelope from an empty coordinate set.")
        return cls(min(xs), max(xs), min(ys), max(ys))

    @classmethod
    def from_bounds(cls, bounds: torch.Tensor) -> "Envelope":
        """Converts a `(2, 2)` tensor `[[min_x, min_y], [max_x, max_y]]` to an Envelope."""
        if not isinstance(bounds, torch.Tensor) or bounds.shape != (2, 2):
            raise ValueError("bounds must be a tensor of shape (2, 2) [[min_x, min_y], [max_x, max_y]].")
        (min_x, min_y), (max_x, max_y) = bounds.to(torch.float64).tolist()
        if not (min_x <= max_x and min_y <= max_y):
            raise ValueError("Envelope min must be less than or equal to max for each dimension.")
        return cls(min_x, max_x, min_y, max_y)

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def max_extent(self) -> float:
        return max(self.width, self.height)

    @property
    def area(self) -> float:
        return self.width * self.height

    def expand_by(self, distance: float) -> "Envelope":
        return Envelope(self.min_x - distance, self.max_x + distance,
                        self.min_y - distance, self.max_y + distance)

    def expand_to_include(self, other: "Envelope") -> "Envelope":
        return Envelope(min(self.min_x, other.min_x), max(self.max_x, other.max_x),
                        min(self.min_y, other.min_y), max(self.max_y, other.max_y))

    def contains_point(self, x: float, y: float) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y

    def to_bounds(self, dtype: torch.dtype = torch.float64, device=None) -> torch.Tensor:
        """Returns the envelope as a `(2, 2)` tensor `[[min_x, min_y], [max_x, max_y]]`."""
        return torch.tensor([[self.min_x, self.min_y], [self.max_x, self.max_y]], dtype=dtype, device=device)


# --- Polygon Clipping (Sutherland-Hodgman) ---

def _sutherland_hodgman_is_inside(point, edge_type: str, clip_value: float) -> bool:
    """
    Checks if a point is 'inside' a given clip edge (for Sutherland-Hodgman).

    Args:
        point (tuple[float, float]): The 2D point to check.
        edge_type (str): Type of clipping edge ('left', 'top', 'right', 'bottom').
        clip_value (float): The coordinate value defining the clip edge.
    Returns:
        bool: True if the point is inside or on the edge, False otherwise.
    """
    if edge_type == 'left': return point[0] >= clip_value
    elif edge_type == 'top': return point[1] <= clip_value
    elif edge_type == 'right': return point[0] <= clip_value
    elif edge_type == 'bottom': return point[1] >= clip_value
    raise ValueError(f"Unknown clip edge type: {edge_type}")

def _boundary_crossing(a, b, axis: str, value: float):
    """
    Returns the point where segment a-b crosses the line `axis == value`.

    The free coordinate is interpolated from the endpoint nearer to the line.
    Voronoi vertices of hull cells can lie extremely far away; anchoring at
    the near end keeps the result accurate to the scale of the clip window.
    The anchor does not depend on the order of `a` and `b`, so every clipper
    sharing a segment reports bit-identical crossings.

    Returns:
        tuple[float, float]: The crossing, snapped exactly onto the line.
    """
    i = 0 if axis == 'x' else 1
    if (abs(b[i] - value), b) < (abs(a[i] - value), a):
        a, b = b, a
    ax, ay = a
    bx, by = b
    if axis == 'x':
        return (value, ay + (value - ax) * ((by - ay) / (bx - ax)))
    return (ax + (value - ay) * ((bx - ax) / (by - ay)), value)

def _sutherland_hodgman_intersect(segment, edge_type: str, clip_value: float):
    axis = 'x' if edge_type in ('left', 'right') else 'y'
    return _boundary_crossing(segment[0], segment[1], axis, clip_value)

def clip_ring_2d(ring, envelope: Envelope) -> list:
    """
    Clips an ordered ring of `(x, y)` tuples against an envelope.

    This is the float-level worker behind `clip_polygon_2d`. The ring is open
    (the first vertex is not repeated). Consecutive duplicate vertices are
    removed from the result.

    Every crossing is computed from the input edge it lies on, not from the
    partially clipped edge, so a cell edge and the matching segment clipped by
    `clip_segment_2d` end at exactly the same point.

    Returns:
        list[tuple[float, float]]: The clipped open ring; may have fewer than
        3 vertices if the polygon lies outside the envelope or degenerates.
    """
    clip_edges = (
        ('left', envelope.min_x),
        ('top', envelope.max_y),
        ('right', envelope.max_x),
        ('bottom', envelope.min_y),
    )
    pts = [(float(p[0]), float(p[1])) for p in ring]
    # Each vertex carries the input edge leaving it; None marks an edge along a clip line.
    output = [(pts[i], (pts[i], pts[(i + 1) % len(pts)])) for i in range(len(pts))]
    for edge_type, clip_val in clip_edges:
        if not output:
            break
        input_pts = output
        output = []
        s_pt, s_src = input_pts[-1] # Start with the last vertex to form edge with the first
        s_in = _sutherland_hodgman_is_inside(s_pt, edge_type, clip_val)
        for p_pt, p_src in input_pts:
            p_in = _sutherland_hodgman_is_inside(p_pt, edge_type, clip_val)
            if s_in and p_in:
                output.append((p_pt, p_src))
            elif s_in and not p_in:
                crossing = _sutherland_hodgman_intersect(s_src or (s_pt, p_pt), edge_type, clip_val)
                output.append((crossing, None))
            elif not s_in and p_in:
                crossing = _sutherland_hodgman_intersect(s_src or (s_pt, p_pt), edge_type, clip_val)
                output.append((crossing, s_src))
                output.append((p_pt, p_src))
            s_pt, s_src, s_in = p_pt, p_src, p_in

    deduped = []
    for pt, _ in output:
        if not deduped or pt != deduped[-1]:
            deduped.append(pt)
    while len(deduped) > 1 and deduped[0] == deduped[-1]:
        deduped.pop()
    return deduped

def clip_polygon_2d(
    polygon_vertices: torch.Tensor,
    clip_bounds: torch.Tensor
) -> torch.Tensor:
    """
    Clips a 2D polygon against an axis-aligned rectangular bounding box using the
    Sutherland-Hodgman algorithm.

    The result is exact for convex input polygons, which is the case for every
    Voronoi cell produced by this package.

    Args:
        polygon_vertices (torch.Tensor): A tensor of shape (N, 2) representing the
                                         ordered vertices of the input polygon.
        clip_bounds (torch.Tensor): A tensor of shape (2, 2) defining the rectangular
                                    clipping window: [[min_x, min_y], [max_x, max_y]].

    Returns:
        torch.Tensor: A tensor of shape (M, 2) with the ordered vertices of the
                      clipped polygon, or an empty (0, 2) tensor if the polygon
                      is entirely outside the clip bounds.
    """
    if not isinstance(polygon_vertices, torch.Tensor) or polygon_vertices.ndim != 2 or polygon_vertices.shape[1] != 2:
        raise ValueError("polygon_vertices must be a tensor of shape (N, 2).")
    envelope = Envelope.from_bounds(clip_bounds)
    dtype = polygon_vertices.dtype
    device = polygon_vertices.device
    if polygon_vertices.shape[0] == 0:
        return torch.empty((0, 2), dtype=dtype, device=device)

    clipped = clip_ring_2d(polygon_vertices.to(torch.float64).tolist(), envelope)
    if not clipped:
        return torch.empty((0, 2), dtype=dtype, device=device)
    return torch.tensor(clipped, dtype=dtype, device=device)

# --- Segment Clipping (Liang-Barsky) ---

def clip_segment_2d(p0, p1, envelope: Envelope):
    """
    Clips the segment p0-p1 to an envelope using the Liang-Barsky algorithm.

    Args:
        p0 (tuple[float, float]): Segment start.
        p1 (tuple[float, float]): Segment end.
        envelope (Envelope): Clipping window.

    Returns:
        tuple[tuple[float, float], tuple[float, float]] | None:
            The clipped segment, or None when no part of positive length
            lies inside the envelope.
    """
    x0, y0 = float(p0[0]), float(p0[1])
    x1, y1 = float(p1[0]), float(p1[1])
    dx = x1 - x0
    dy = y1 - y0
    t0, t1 = 0.0, 1.0
    boundary0 = boundary1 = None
    for p, q, boundary in ((-dx, x0 - envelope.min_x, ('x', envelope.min_x)),
                           (dx, envelope.max_x - x0, ('x', envelope.max_x)),
                           (-dy, y0 - envelope.min_y, ('y', envelope.min_y)),
                           (dy, envelope.max_y - y0, ('y', envelope.max_y))):
        if p == 0.0:
            if q < 0.0:
                return None # Parallel to and outside this boundary
            continue
        r = q / p
        if p < 0.0:
            if r > t1:
                return None
            if r > t0:
                t0, boundary0 = r, boundary
        else:
            if r < t0:
                return None
            if r < t1:
                t1, boundary1 = r, boundary
    if t0 >= t1:
        return None

    start = (x0, y0) if boundary0 is None else _boundary_crossing((x0, y0), (x1, y1), *boundary0)
    end = (x1, y1) if boundary1 is None else _boundary_crossing((x0, y0), (x1, y1), *boundary1)
    if start == end:
        return None
    return start, end

# --- Convex hull ---

def monotone_chain_2d(points) -> list:
    """
    Computes the convex hull of distinct 2D points with Andrew's monotone chain.

    Orientation tests are exact, and points lying on a hull edge are kept, so
    every hull edge joins two consecutive boundary points.

    Args:
        points: A sequence of `(x, y)` pairs or a tensor of shape (N, 2).

    Returns:
        list[int]: Indices into `points` in counter-clockwise order starting at
        the lexicographically smallest point. Collinear input returns all
        indices in sorted order.
    """
    if isinstance(points, torch.Tensor):
        points = points.to(torch.float64).tolist()
    pts = [(float(p[0]), float(p[1])) for p in points]
    order = sorted(range(len(pts)), key=lambda i: pts[i])
    if len(order) < 3:
        return order
    first, last = pts[order[0]], pts[order[-1]]
    if all(orientation(first, last, pts[i]) == 0 for i in order):
        return order

    def half_hull(indices):
        chain = []
        for i in indices:
            while len(chain) >= 2 and orientation(pts[chain[-2]], pts[chain[-1]], pts[i]) < 0:
                chain.pop()
            chain.append(i)
        return chain

    lower = half_hull(order)
    upper = half_hull(reversed(order))
    return lower[:-1] + upper[:-1]

# --- Area and containment ---

def compute_polygon_area(points_coords: torch.Tensor) -> float:
    """
    Computes the signed area of a 2D polygon with the shoelace formula.

    Args:
        points_coords (torch.Tensor): A tensor of shape (N, 2) holding the
                                      ordered vertices of an open ring.

    Returns:
        float: Positive for counter-clockwise rings, negative for clockwise
               rings, 0.0 if N < 3.
    """
    if not (isinstance(points_coords, torch.Tensor) and points_coords.ndim == 2 and points_coords.shape[1] == 2):
        raise ValueError("Input points_coords must be a PyTorch tensor of shape (N, 2).")
    if points_coords.shape[0] < 3:
        return 0.0
    pts = points_coords.to(torch.float64).tolist()
    twice_area = math.fsum(
        pts[i][0] * pts[(i + 1) % len(pts)][1] - pts[(i + 1) % len(pts)][0] * pts[i][1]
        for i in range(len(pts))
    )
    return twice_area / 2.0

def point_in_polygon_2d(point, polygon_vertices: torch.Tensor, tol: float = EPSILON) -> bool:
    """
    Tests whether a point lies inside or on the boundary of a polygon.

    Uses ray casting for the interior test and a distance check against each
    edge (within `tol`) for the boundary.

    Args:
        point (torch.Tensor | tuple): The 2D point to test.
        polygon_vertices (torch.Tensor): Tensor of shape (N, 2), an open ring.
        tol (float, optional): Boundary tolerance. Defaults to `EPSILON`.
    """
    if isinstance(point, torch.Tensor):
        point = point.to(torch.float64).tolist()
    px, py = float(point[0]), float(point[1])
    pts = polygon_vertices.to(torch.float64).tolist()
    n = len(pts)
    if n < 3:
        return False
    inside = False
    for i in range(n):
        x1, y1 = pts[i]
        x2, y2 = pts[(i + 1) % n]
        if _point_segment_distance(px, py, x1, y1, x2, y2) <= tol:
            return True
        if (y1 > py) != (y2 > py):
            x_cross = x1 + (py - y1) * (x2 - x1) / (y2 - y1)
            if px < x_cross:
                inside = not inside
    return inside

def _point_segment_distance(px: float, py: float, x1: float, y1: float, x2: float, y2: float) -> float:
    dx = x2 - x1
    dy = y2 - y1
    len_sq = dx * dx + dy * dy
    if len_sq == 0.0:
        return math.hypot(px - x1, py - y1)
    t = ((px - x1) * dx + (py - y1) * dy) / len_sq
    t = min(1.0, max(0.0, t))
    return math.hypot(px - (x1 + t * dx), py - (y1 + t * dy))

def point_segment_distance(point, seg_start, seg_end) -> float:
    """Euclidean distance from `point` to the closed segment `seg_start`-`seg_end`."""
    return _point_segment_distance(point[0], point[1], seg_start[0], seg_start[1], seg_end[0], seg_end[1])
