"""
Computes circumcenters of 2D triangles.

The circumcenter is the center of the unique circle through the three vertices
of a triangle. Circumcenters of Delaunay triangles are the vertices of the
Voronoi diagram, so they must stay accurate for the thin "sliver" triangles
that appear along nearly collinear input.

Strategy:
- Coordinates are translated so the first vertex is the origin, which removes
  the large common offset of geographic-style coordinates before any product
  is formed.
- If the triangle is well conditioned, i.e. the cross product of its two edge
  vectors exceeds `CIRCUMCENTER_EXACT_THRESHOLD` times the product of their
  lengths (the sine of the angle at the first vertex), the center is computed
  in double precision.
- Otherwise the same formula is evaluated with exact rationals
  (`fractions.Fraction`) and rounded once at the end. The result may be very
  far away, but it is the correctly placed Voronoi vertex; clipping brings it
  back into the diagram envelope.
- Exactly collinear vertices have no circumcenter. `circumcenter` then returns
  the centroid so that callers always receive a finite point, while the tensor
  helpers return `None` as before.
"""
import math
from fractions import Fraction

import torch

from .geometry_core import CIRCUMCENTER_EXACT_THRESHOLD
from .robust_predicates import orientation

# --- Circumcenter Calculation Functions ---

def _circumcenter_exact(a, b, c):
    ax, ay = Fraction(a[0]), Fraction(a[1])
    bx, by = Fraction(b[0]) - ax, Fraction(b[1]) - ay
    cx, cy = Fraction(c[0]) - ax, Fraction(c[1]) - ay
    d = 2 * (bx * cy - by * cx)
    if d == 0:
        return None
    b_sq = bx * bx + by * by
    c_sq = cx * cx + cy * cy
    ux = (cy * b_sq - by * c_sq) / d
    uy = (bx * c_sq - cx * b_sq) / d
    return float(ax + ux), float(ay + uy)

def circumcenter(a, b, c):
    """
    Computes the circumcenter of the triangle `a, b, c`.

    Args:
        a, b, c: Triangle vertices as `(x, y)` sequences of floats.

    Returns:
        tuple[float, float]: The circumcenter. For exactly collinear vertices
        the centroid of the three points is returned instead.
    """
    ax, ay = a[0], a[1]
    bx, by = b[0] - ax, b[1] - ay
    cx, cy = c[0] - ax, c[1] - ay
    cross = bx * cy - by * cx
    b_sq = bx * bx + by * by
    c_sq = cx * cx + cy * cy

    if abs(cross) > CIRCUMCENTER_EXACT_THRESHOLD * math.sqrt(b_sq * c_sq):
        d = 2.0 * cross
        ux = (cy * b_sq - by * c_sq) / d
        uy = (bx * c_sq - cx * b_sq) / d
        return ax + ux, ay + uy

    center = _circumcenter_exact(a, b, c)
    if center is None or not (math.isfinite(center[0]) and math.isfinite(center[1])):
        return (a[0] + b[0] + c[0]) / 3.0, (a[1] + b[1] + c[1]) / 3.0
    return center

def compute_triangle_circumcenter_2d(p1: torch.Tensor, p2: torch.Tensor, p3: torch.Tensor) -> torch.Tensor | None:
    """
    Computes the circumcenter of a 2D triangle defined by three points.

    Args:
        p1 (torch.Tensor): Tensor of shape (2,) representing the first vertex.
        p2 (torch.Tensor): Tensor of shape (2,) representing the second vertex.
        p3 (torch.Tensor): Tensor of shape (2,) representing the third vertex.

    Returns:
        torch.Tensor | None:
            Coordinates of the circumcenter as a tensor of shape (2,) in the
            dtype of `p1`. Returns `None` if the points are exactly collinear.
    """
    a, b, c = (p.to(torch.float64).tolist()[:2] for p in (p1, p2, p3))
    if orientation(a, b, c) == 0:
        return None
    return torch.tensor(circumcenter(a, b, c), dtype=p1.dtype, device=p1.device)

def get_triangle_circumcircle_details_2d(p1: torch.Tensor, p2: torch.Tensor, p3: torch.Tensor):
    """
    Computes the circumcenter and squared circumradius of a 2D triangle.

    Returns:
        Tuple[torch.Tensor | None, torch.Tensor | None]:
            - circumcenter (torch.Tensor | None): shape (2,), or `None` if the
              points are collinear.
            - squared_radius (torch.Tensor | None): scalar tensor, or `None` if
              the points are collinear.
    """
    center = compute_triangle_circumcenter_2d(p1, p2, p3)
    if center is None:
        return None, None
    squared_radius = torch.sum((p1.to(torch.float64) - center.to(torch.float64)) ** 2).to(p1.dtype)
    return center, squared_radius
