"""
Quad-edge planar subdivision (Guibas & Stolfi) stored as an index arena.

Every undirected edge is a *quad*: four directed edges that share one record.
A directed edge is the integer `4 * q + r`, where `q` indexes the quad and `r`
selects the rotation:

    r = 0   the primal edge e
    r = 1   e.rot      dual edge, from the right face of e to its left face
    r = 2   e.sym      e reversed
    r = 3   e.inv_rot  dual edge, from the left face of e to its right face

Each directed edge owns two slots in flat Python lists: `onext`, the next edge
counter-clockwise around its origin, and `origin`. Primal origins are vertex
ids; dual origins are face-center ids filled in by `compute_face_centers`.
Rotations are computed arithmetically, so all navigation is O(1), and the
cyclic rings around vertices and faces are plain integers with no ownership
concerns. Deleted quads are flagged dead and skipped by every enumeration; the
whole arena is released with the subdivision.

The subdivision starts as a single "frame" triangle built around the envelope
it is given. Sites are always strictly inside the frame, so every site has a
closed ring of triangles around it, including sites on the convex hull.
"""
import math

from .geometry_core import EDGE_COINCIDENCE_TOL_FACTOR, FRAME_SIZE_FACTOR, Envelope, point_segment_distance
from .robust_predicates import orientation
from .circumcenter_calculations import circumcenter

FRAME_VERTEX_COUNT = 3


class InternalTopologyError(RuntimeError):
    """Raised when the subdivision reaches a state it should never be in."""


def rot(e: int) -> int:
    return (e & ~3) | ((e + 1) & 3)

def inv_rot(e: int) -> int:
    return (e & ~3) | ((e + 3) & 3)

def sym(e: int) -> int:
    return (e & ~3) | ((e + 2) & 3)

def is_primal(e: int) -> bool:
    """True for the two directed edges of a quad that join vertices (r = 0 or 2)."""
    return (e & 1) == 0


class QuadEdgeSubdivision:
    """
    A triangulated planar subdivision enclosed by a synthetic frame triangle.

    Args:
        envelope (Envelope): Region that will contain every inserted site. The
            frame is placed `FRAME_SIZE_FACTOR` envelope extents outside it.
        tolerance (float, optional): Distance below which two sites are the
            same vertex. 0.0 (default) means exact coordinate equality.
    """

    def __init__(self, envelope: Envelope, tolerance: float = 0.0):
        tolerance = float(tolerance)
        if not math.isfinite(tolerance) or tolerance < 0.0:
            raise ValueError(f"tolerance must be a finite non-negative number, got {tolerance}.")
        self._tolerance = tolerance
        self._edge_coincidence_tolerance = tolerance / EDGE_COINCIDENCE_TOL_FACTOR
        self._envelope = envelope

        self._coords: list[tuple[float, float]] = []
        self._zs: list[float] = []

        self._onext: list[int] = []
        self._origin: list[int] = []
        self._live: list[bool] = []
        self._live_quads = 0

        self._face_centers: list[tuple[float, float]] = []

        self._frame_envelope = self._create_frame(envelope)
        self._starting_edge = self._init_subdivision()
        self._last_edge = self._starting_edge

    # --- Construction ---

    def _create_frame(self, envelope: Envelope) -> Envelope:
        offset = envelope.max_extent * FRAME_SIZE_FACTOR
        if offset <= 0.0:
            offset = FRAME_SIZE_FACTOR # Single-point envelope
        self.add_vertex((envelope.max_x + envelope.min_x) / 2.0, envelope.max_y + offset)
        self.add_vertex(envelope.min_x - offset, envelope.min_y - offset)
        self.add_vertex(envelope.max_x + offset, envelope.min_y - offset)
        return Envelope(envelope.min_x - offset, envelope.max_x + offset,
                        envelope.min_y - offset, envelope.max_y + offset)

    def _init_subdivision(self) -> int:
        ea = self.make_edge(0, 1)
        eb = self.make_edge(1, 2)
        self.splice(sym(ea), eb)
        ec = self.make_edge(2, 0)
        self.splice(sym(eb), ec)
        self.splice(sym(ec), ea)
        return ea

    def add_vertex(self, x: float, y: float, z: float = math.nan) -> int:
        """Appends a vertex to the coordinate arena and returns its id. Topology is unchanged."""
        self._coords.append((float(x), float(y)))
        self._zs.append(float(z))
        return len(self._coords) - 1

    # --- Properties ---

    @property
    def tolerance(self) -> float:
        return self._tolerance

    @property
    def envelope(self) -> Envelope:
        """The envelope the frame was built around."""
        return self._envelope

    @property
    def frame_envelope(self) -> Envelope:
        """Bounding box of the three frame vertices."""
        return self._frame_envelope

    @property
    def starting_edge(self) -> int:
        """A frame edge; it is never deleted or flipped."""
        return self._starting_edge

    @property
    def vertex_count(self) -> int:
        """Number of vertices, frame included."""
        return len(self._coords)

    @property
    def edge_count(self) -> int:
        """Number of live undirected edges, frame included."""
        return self._live_quads

    def vertex_xy(self, v: int) -> tuple[float, float]:
        return self._coords[v]

    def vertex_coordinates(self, v: int) -> tuple[float, float, float]:
        """Returns `(x, y, z)` of a vertex; `z` is NaN when the site had none."""
        x, y = self._coords[v]
        return x, y, self._zs[v]

    # --- Topological operators ---

    def make_edge(self, o: int, d: int) -> int:
        """
        Creates an isolated edge from vertex `o` to vertex `d`.

        The new quad is its own ring: the primal edges are alone around their
        origins and the two dual edges form a single loop.
        """
        base = 4 * len(self._live)
        self._onext.extend((base, base + 3, base + 2, base + 1))
        self._origin.extend((o, -1, d, -1))
        self._live.append(True)
        self._live_quads += 1
        return base

    def splice(self, a: int, b: int) -> None:
        """
        Exchanges the origin rings of `a` and `b` and the corresponding dual rings.

        If the rings are distinct they are merged; if they are the same ring it
        is split in two. Applying the same splice twice restores the structure.
        """
        onext = self._onext
        alpha = rot(onext[a])
        beta = rot(onext[b])
        onext[a], onext[b] = onext[b], onext[a]
        onext[alpha], onext[beta] = onext[beta], onext[alpha]

    def connect(self, a: int, b: int) -> int:
        """
        Adds an edge from the destination of `a` to the origin of `b`.

        The new edge shares its left face with both `a` and `b`.
        """
        e = self.make_edge(self.dest(a), self.orig(b))
        self.splice(e, self.lnext(a))
        self.splice(sym(e), b)
        return e

    def delete_edge(self, e: int) -> None:
        """
        Disconnects `e` from the mesh and marks its quad dead.

        Raises:
            InternalTopologyError: If `e` is one of the three outer frame edges.
        """
        if self.is_frame_vertex(self.orig(e)) and self.is_frame_vertex(self.dest(e)):
            raise InternalTopologyError(f"Frame edge {e} cannot be deleted.")
        self.splice(e, self.oprev(e))
        self.splice(sym(e), self.oprev(sym(e)))
        q = e >> 2
        if self._live[q]:
            self._live[q] = False
            self._live_quads -= 1
        if (self._last_edge >> 2) == q:
            self._last_edge = self._starting_edge

    def swap(self, e: int) -> None:
        """
        Flips `e` inside the quadrilateral formed by its two adjacent triangles.

        Afterwards `e` joins the two apexes that were opposite it.
        """
        a = self.oprev(e)
        b = self.oprev(sym(e))
        self.splice(e, a)
        self.splice(sym(e), b)
        self.splice(e, self.lnext(a))
        self.splice(sym(e), self.lnext(b))
        self._origin[e] = self.dest(a)
        self._origin[sym(e)] = self.dest(b)

    # --- Navigation ---

    def rot(self, e: int) -> int:
        return rot(e)

    def inv_rot(self, e: int) -> int:
        return inv_rot(e)

    def sym(self, e: int) -> int:
        return sym(e)

    def onext(self, e: int) -> int:
        return self._onext[e]

    def oprev(self, e: int) -> int:
        return rot(self._onext[rot(e)])

    def dnext(self, e: int) -> int:
        return sym(self._onext[sym(e)])

    def dprev(self, e: int) -> int:
        return inv_rot(self._onext[inv_rot(e)])

    def lnext(self, e: int) -> int:
        return rot(self._onext[inv_rot(e)])

    def lprev(self, e: int) -> int:
        return sym(self._onext[e])

    def rnext(self, e: int) -> int:
        return inv_rot(self._onext[rot(e)])

    def rprev(self, e: int) -> int:
        return self._onext[sym(e)]

    def orig(self, e: int) -> int:
        return self._origin[e]

    def dest(self, e: int) -> int:
        return self._origin[sym(e)]

    def is_live(self, e: int) -> bool:
        return self._live[e >> 2]

    # --- Geometric queries ---

    def is_frame_vertex(self, v: int) -> bool:
        return v < FRAME_VERTEX_COUNT

    def is_frame_edge(self, e: int) -> bool:
        """True if either endpoint of the primal edge `e` is a frame vertex."""
        return self.is_frame_vertex(self.orig(e)) or self.is_frame_vertex(self.dest(e))

    def is_frame_border_edge(self, e: int) -> bool:
        """
        True if `e` separates a frame triangle from an interior triangle.

        Such an edge touches no frame vertex itself, but the apex of one of its
        two adjacent triangles is a frame vertex.
        """
        left_apex = self.dest(self.lnext(e))
        right_apex = self.dest(self.lnext(sym(e)))
        return self.is_frame_vertex(left_apex) or self.is_frame_vertex(right_apex)

    def right_of(self, p, e: int) -> bool:
        return orientation(self._coords[self.orig(e)], self._coords[self.dest(e)], p) < 0

    def matches_vertex(self, v: int, p) -> bool:
        """True if point `p` is the same site as vertex `v` under the tolerance."""
        x, y = self._coords[v]
        if x == p[0] and y == p[1]:
            return True
        return math.hypot(x - p[0], y - p[1]) < self._tolerance

    def is_vertex_of_edge(self, e: int, p) -> bool:
        return self.matches_vertex(self.orig(e), p) or self.matches_vertex(self.dest(e), p)

    def is_on_edge(self, e: int, p) -> bool:
        """
        Tests whether `p` splits the edge `e`.

        A point on the open segment (exactly collinear, strictly between the
        endpoints) always splits it. With a positive tolerance, a point within
        `tolerance / EDGE_COINCIDENCE_TOL_FACTOR` of the segment does as well.
        """
        a = self._coords[self.orig(e)]
        b = self._coords[self.dest(e)]
        if orientation(a, b, p) == 0:
            if a[0] != b[0]:
                if min(a[0], b[0]) < p[0] < max(a[0], b[0]):
                    return True
            elif min(a[1], b[1]) < p[1] < max(a[1], b[1]):
                return True
        if self._edge_coincidence_tolerance > 0.0:
            return point_segment_distance(p, a, b) < self._edge_coincidence_tolerance
        return False

    def can_split_edge(self, e: int, p) -> bool:
        """
        Tests whether `p` can replace the edge `e` by a fan of four edges.

        `p` must lie strictly inside the quadrilateral formed by the triangles
        on both sides of `e`. Outer frame edges border the unbounded face and
        are never split.
        """
        if self.is_frame_vertex(self.orig(e)) and self.is_frame_vertex(self.dest(e)):
            return False
        s = sym(e)
        for edge in (self.lnext(e), self.lprev(e), self.lnext(s), self.lprev(s)):
            if orientation(self._coords[self.orig(edge)], self._coords[self.dest(edge)], p) <= 0:
                return False
        return True

    def locate(self, x: float, y: float) -> int:
        """
        Finds an edge of the triangle containing the point `(x, y)`.

        Walks across the mesh from the previously located edge, crossing any
        edge that has the target on its right. The returned edge `e` has the
        target in its closed left face, or has it as an endpoint.

        Raises:
            InternalTopologyError: If the walk does not terminate, which can
                only happen for a point outside the frame or a corrupt mesh.
        """
        p = (float(x), float(y))
        e = self._last_edge
        if not self._live[e >> 2]:
            e = self._starting_edge
        max_iterations = 4 * self._live_quads + FRAME_VERTEX_COUNT
        for _ in range(max_iterations):
            if p == self._coords[self.orig(e)] or p == self._coords[self.dest(e)]:
                break
            if self.right_of(p, e):
                e = sym(e)
            elif not self.right_of(p, self._onext[e]):
                e = self._onext[e]
            elif not self.right_of(p, self.dprev(e)):
                e = self.dprev(e)
            else:
                break
        else:
            raise InternalTopologyError(
                f"Could not locate point ({x}, {y}) after {max_iterations} steps; "
                f"frame envelope is {self._frame_envelope}."
            )
        self._last_edge = e
        return e

    def locate_segment(self, p0, p1) -> int | None:
        """
        Returns the edge running from the vertex at `p0` to the vertex at `p1`.

        Returns:
            int | None: The directed edge, or None if either point is not a
            vertex or the two vertices are not adjacent.
        """
        p0 = (float(p0[0]), float(p0[1]))
        p1 = (float(p1[0]), float(p1[1]))
        e = self.locate(*p0)
        base = sym(e) if self._coords[self.dest(e)] == p0 else e
        if self._coords[self.orig(base)] != p0:
            return None
        edge = base
        while True:
            if self._coords[self.dest(edge)] == p1:
                return edge
            edge = self._onext[edge]
            if edge == base:
                return None

    def find_nearest_vertex(self, p, start_vertex: int, start_edge: int) -> tuple[int, float]:
        """
        Greedy nearest-neighbour search over the Delaunay graph.

        In a Delaunay triangulation every vertex that is not the nearest one to
        `p` has a neighbour strictly closer to `p`, so repeatedly stepping to the
        closest neighbour ends at the nearest vertex. Frame vertices are never
        visited.

        Args:
            p: Query point `(x, y)`.
            start_vertex (int): Non-frame vertex to start from.
            start_edge (int): Any edge whose origin is `start_vertex`.

        Returns:
            tuple[int, float]: The nearest vertex and its distance to `p`.
        """
        current = start_vertex
        current_edge = start_edge
        cx, cy = self._coords[current]
        current_dist = math.hypot(cx - p[0], cy - p[1])
        while True:
            best_edge = None
            best_dist = current_dist
            e = current_edge
            while True:
                v = self.dest(e)
                if not self.is_frame_vertex(v):
                    vx, vy = self._coords[v]
                    d = math.hypot(vx - p[0], vy - p[1])
                    if d < best_dist:
                        best_edge, best_dist = e, d
                e = self._onext[e]
                if e == current_edge:
                    break
            if best_edge is None:
                return current, current_dist
            current_edge = sym(best_edge)
            current = self.orig(current_edge)
            current_dist = best_dist

    # --- Enumeration ---

    def get_vertices(self, include_frame: bool = False) -> list[int]:
        start = 0 if include_frame else FRAME_VERTEX_COUNT
        return list(range(start, len(self._coords)))

    def get_primary_edges(self, include_frame: bool = False) -> list[int]:
        """Returns one directed primal edge per live undirected edge."""
        edges = []
        for q, live in enumerate(self._live):
            if not live:
                continue
            e = 4 * q
            if include_frame or not self.is_frame_edge(e):
                edges.append(e)
        return edges

    def get_vertex_unique_edges(self, include_frame: bool = False) -> list[int]:
        """
        Returns one edge originating at each vertex, ordered by vertex id.

        Raises:
            InternalTopologyError: If a non-frame vertex has no incident edge.
        """
        by_vertex: dict[int, int] = {}
        for q, live in enumerate(self._live):
            if not live:
                continue
            for e in (4 * q, 4 * q + 2):
                v = self._origin[e]
                if v not in by_vertex and (include_frame or not self.is_frame_vertex(v)):
                    by_vertex[v] = e
        expected = self.get_vertices(include_frame)
        missing = [v for v in expected if v not in by_vertex]
        if missing:
            raise InternalTopologyError(f"Vertices {missing[:5]} are not connected to the subdivision.")
        return [by_vertex[v] for v in expected]

    def _outer_face_edges(self) -> tuple[int, int, int]:
        e = sym(self._starting_edge)
        return e, self.lnext(e), self.lnext(self.lnext(e))

    def get_triangle_edges(self, include_frame: bool = False) -> list[tuple[int, int, int]]:
        """
        Lists every triangular face as the three directed edges bounding it on the left.

        The unbounded face outside the frame is never returned. With
        `include_frame=False`, triangles touching a frame vertex are skipped.

        Raises:
            InternalTopologyError: If a face is not bounded by exactly three edges.
        """
        visited = set(self._outer_face_edges())
        triangles = []
        for q, live in enumerate(self._live):
            if not live:
                continue
            for e in (4 * q, 4 * q + 2):
                if e in visited:
                    continue
                e1 = self.lnext(e)
                e2 = self.lnext(e1)
                if self.lnext(e2) != e:
                    raise InternalTopologyError(f"Face left of edge {e} is not a triangle.")
                visited.update((e, e1, e2))
                if not include_frame and (self.is_frame_vertex(self.orig(e))
                                          or self.is_frame_vertex(self.orig(e1))
                                          or self.is_frame_vertex(self.orig(e2))):
                    continue
                triangles.append((e, e1, e2))
        return triangles

    def get_triangle_vertices(self, include_frame: bool = False) -> list[tuple[int, int, int]]:
        """Lists every triangle as its three vertex ids in counter-clockwise order."""
        return [(self.orig(e0), self.orig(e1), self.orig(e2))
                for e0, e1, e2 in self.get_triangle_edges(include_frame)]

    # --- Dual graph ---

    def compute_face_centers(self) -> int:
        """
        Computes the circumcenter of every triangle, frame triangles included.

        Each center becomes the origin of the dual edges leaving that face
        (`inv_rot` of each bounding edge), turning the dual half of the arena
        into the Voronoi graph. Must be called again after any topology change.

        Returns:
            int: Number of faces processed.
        """
        self._face_centers = []
        coords = self._coords
        for e0, e1, e2 in self.get_triangle_edges(include_frame=True):
            center_id = len(self._face_centers)
            self._face_centers.append(
                circumcenter(coords[self.orig(e0)], coords[self.orig(e1)], coords[self.orig(e2)])
            )
            for e in (e0, e1, e2):
                self._origin[inv_rot(e)] = center_id
        return len(self._face_centers)

    def left_face_center(self, e: int) -> tuple[float, float]:
        """Circumcenter of the triangle to the left of `e` (after `compute_face_centers`)."""
        center_id = self._origin[inv_rot(e)]
        if center_id < 0:
            raise InternalTopologyError(f"No face center recorded left of edge {e}; call compute_face_centers first.")
        return self._face_centers[center_id]

    def voronoi_cell_ring(self, e: int) -> list[tuple[float, float]]:
        """
        Returns the Voronoi cell of the origin of `e` as an open CCW ring.

        The ring visits the circumcenters of the triangles around the vertex in
        counter-clockwise order. Consecutive repeated centers (cocircular
        neighbours) are dropped.
        """
        ring = []
        start = e
        while True:
            center = self.left_face_center(e)
            if not ring or ring[-1] != center:
                ring.append(center)
            e = self._onext[e]
            if e == start:
                break
        while len(ring) > 1 and ring[0] == ring[-1]:
            ring.pop()
        return ring

    # --- Validation ---

    def check_consistency(self) -> None:
        """
        Verifies the quad-edge invariants and the triangulation structure.

        Checks, for every live directed edge, that its `onext` is live, that
        `oprev` inverts `onext`, that primal rings share one origin, and that
        every face is a triangle; finally checks Euler's formula V - E + F = 2.

        Raises:
            InternalTopologyError: On the first violated invariant.
        """
        for q, live in enumerate(self._live):
            if not live:
                continue
            for r in range(4):
                e = 4 * q + r
                n = self._onext[e]
                if not self._live[n >> 2]:
                    raise InternalTopologyError(f"Edge {e} points to deleted edge {n}.")
                if self.oprev(n) != e:
                    raise InternalTopologyError(f"oprev(onext({e})) != {e}.")
                if is_primal(e) != is_primal(n):
                    raise InternalTopologyError(f"Ring of edge {e} mixes primal and dual edges.")
                if is_primal(e) and self._origin[n] != self._origin[e]:
                    raise InternalTopologyError(f"Origin ring of edge {e} mixes vertices.")
        faces = len(self.get_triangle_edges(include_frame=True)) + 1 # Plus the outer face
        connected = {self._origin[4 * q + r] for q, live in enumerate(self._live) if live for r in (0, 2)}
        if len(connected) - self._live_quads + faces != 2:
            raise InternalTopologyError(
                f"Euler characteristic violated: V={len(connected)}, E={self._live_quads}, F={faces}."
            )
