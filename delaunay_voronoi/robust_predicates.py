"""
Robust orientation and in-circle predicates for 2D points.

Both predicates first evaluate their determinant in double precision together
with a forward error bound (J. R. Shewchuk, "Adaptive Precision Floating-Point
Arithmetic and Fast Robust Geometric Predicates"). When the floating-point
result is too close to zero to trust its sign, the determinant is recomputed
exactly with `fractions.Fraction`, which represents every finite double without
rounding. The returned signs are therefore always exact, which keeps the
incremental Delaunay triangulation consistent for collinear, cocircular and
nearly coincident input.

Points are plain `(x, y)` sequences of floats; only the first two components
are read. `is_point_in_circumcircle` offers the same test on PyTorch tensors.
"""
from fractions import Fraction

import torch

_MACHINE_EPSILON = 2.0 ** -53

# Error-bound coefficients for the double-precision filters.
CCW_ERRBOUND_A = (3.0 + 16.0 * _MACHINE_EPSILON) * _MACHINE_EPSILON
ICC_ERRBOUND_A = (10.0 + 96.0 * _MACHINE_EPSILON) * _MACHINE_EPSILON


def _sign(value) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


def _orientation_exact(a, b, c) -> int:
    ax, ay = Fraction(a[0]), Fraction(a[1])
    bx, by = Fraction(b[0]), Fraction(b[1])
    cx, cy = Fraction(c[0]), Fraction(c[1])
    return _sign((ax - cx) * (by - cy) - (ay - cy) * (bx - cx))


def orientation(a, b, c) -> int:
    """
    Classifies point `c` against the directed line `a -> b`.

    Args:
        a, b, c: 2D points as `(x, y)` sequences.

    Returns:
        int: 1 if `c` lies to the left of `a -> b` (a, b, c counter-clockwise),
             -1 if it lies to the right (clockwise), 0 if the three points are
             exactly collinear.
    """
    detleft = (a[0] - c[0]) * (b[1] - c[1])
    detright = (a[1] - c[1]) * (b[0] - c[0])
    det = detleft - detright

    if detleft > 0.0:
        if detright <= 0.0:
            return _sign(det)
        detsum = detleft + detright
    elif detleft < 0.0:
        if detright >= 0.0:
            return _sign(det)
        detsum = -detleft - detright
    else:
        return _sign(det)

    errbound = CCW_ERRBOUND_A * detsum
    if det >= errbound or -det >= errbound:
        return _sign(det)
    return _orientation_exact(a, b, c)


def _in_circle_exact(a, b, c, d) -> int:
    dx, dy = Fraction(d[0]), Fraction(d[1])
    adx, ady = Fraction(a[0]) - dx, Fraction(a[1]) - dy
    bdx, bdy = Fraction(b[0]) - dx, Fraction(b[1]) - dy
    cdx, cdy = Fraction(c[0]) - dx, Fraction(c[1]) - dy
    alift = adx * adx + ady * ady
    blift = bdx * bdx + bdy * bdy
    clift = cdx * cdx + cdy * cdy
    det = (alift * (bdx * cdy - cdx * bdy)
           + blift * (cdx * ady - adx * cdy)
           + clift * (adx * bdy - bdx * ady))
    return _sign(det)


def in_circle_sign(a, b, c, d) -> int:
    """
    Returns the exact sign of the in-circle determinant of `a, b, c, d`.

    For counter-clockwise `a, b, c` the result is 1 when `d` lies strictly
    inside their circumcircle, -1 when strictly outside and 0 when the four
    points are cocircular. The sign flips for clockwise `a, b, c`.
    """
    adx = a[0] - d[0]
    ady = a[1] - d[1]
    bdx = b[0] - d[0]
    bdy = b[1] - d[1]
    cdx = c[0] - d[0]
    cdy = c[1] - d[1]

    bdxcdy = bdx * cdy
    cdxbdy = cdx * bdy
    alift = adx * adx + ady * ady

    cdxady = cdx * ady
    adxcdy = adx * cdy
    blift = bdx * bdx + bdy * bdy

    adxbdy = adx * bdy
    bdxady = bdx * ady
    clift = cdx * cdx + cdy * cdy

    det = (alift * (bdxcdy - cdxbdy)
           + blift * (cdxady - adxcdy)
           + clift * (adxbdy - bdxady))

    permanent = ((abs(bdxcdy) + abs(cdxbdy)) * alift
                 + (abs(cdxady) + abs(adxcdy)) * blift
                 + (abs(adxbdy) + abs(bdxady)) * clift)
    errbound = ICC_ERRBOUND_A * permanent
    if det > errbound or -det > errbound:
        return _sign(det)
    return _in_circle_exact(a, b, c, d)


def in_circle(a, b, c, d) -> bool:
    """
    Tests whether `d` lies strictly inside the circle through `a, b, c`.

    `a, b, c` must be in counter-clockwise order. Points on the circle are not
    inside, so a cocircular quadrilateral never triggers an edge flip.
    """
    return in_circle_sign(a, b, c, d) > 0


def is_point_in_circumcircle(point: torch.Tensor,
                             tri_p1: torch.Tensor, tri_p2: torch.Tensor, tri_p3: torch.Tensor) -> bool:
    """
    Checks if a point is strictly inside the circumcircle of a triangle.

    Unlike `in_circle`, the triangle may be given in either winding order.

    Args:
        point (torch.Tensor): The 2D point to check (shape (2,)).
        tri_p1 (torch.Tensor): First vertex of the triangle (shape (2,)).
        tri_p2 (torch.Tensor): Second vertex of the triangle (shape (2,)).
        tri_p3 (torch.Tensor): Third vertex of the triangle (shape (2,)).

    Returns:
        bool: True if the point is strictly inside the circumcircle.
              False if on or outside the circumcircle, or if the triangle is
              degenerate (exactly collinear vertices).
    """
    p, a, b, c = (t.to(torch.float64).tolist()[:2] for t in (point, tri_p1, tri_p2, tri_p3))
    winding = orientation(a, b, c)
    if winding == 0:
        return False
    return winding * in_circle_sign(a, b, c, p) > 0
