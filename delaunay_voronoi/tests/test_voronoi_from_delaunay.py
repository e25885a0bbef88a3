"""
Unit tests for the Voronoi diagram builder in `voronoi_from_delaunay.py`.

The scenarios use small hand-checkable site sets with known Voronoi vertices.
Besides exact coordinates, every polygon diagram is checked for the partition
property: cells are counter-clockwise, contain their site, and their areas add
up to the area of the diagram envelope.
"""
import torch
import unittest
from ..geometry_core import Envelope, compute_polygon_area, point_in_polygon_2d
from ..quadedge_subdivision import InternalTopologyError
from ..voronoi_from_delaunay import (
    DiagramResult, InvalidOrderedInputError, TensorGeometryFactory, VoronoiConfig,
    VoronoiDiagramBuilder, compute_voronoi_diagram_2d
)

THREE_SITES = [(150., 200.), (180., 270.), (275., 163.)]
FOUR_SITES = [(280., 300.), (420., 330.), (380., 230.), (320., 160.)]
FIFTEEN_SITES = [(280., 200.), (406., 285.), (580., 280.), (550., 190.), (370., 190.), (360., 90.),
                 (480., 110.), (440., 160.), (450., 180.), (480., 180.), (460., 160.), (360., 210.),
                 (360., 220.), (370., 210.), (375., 227.)]
SIX_SITES = [(320., 170.), (366., 246.), (530., 230.), (530., 300.), (455., 277.), (490., 160.)]
SURVEY_POINTS = [
    (193602.14, 469345.28, 21.86), (193602.54, 469345.49, 21.73),
    (193603.09, 469345.554, 21.615000000000002), (193603.375, 469345.228, 21.615000000000002),
    (193603.09, 469345.228, 21.615000000000002), (193602.805, 469345.228, 21.615000000000002),
    (193603.375, 469344.902, 21.615000000000002), (193603.09, 469344.902, 21.615000000000002),
    (193602.805, 469344.902, 21.615000000000002), (193603.375, 469344.576, 21.615000000000002),
    (193603.09, 469344.576, 21.615000000000002), (193602.32, 469346.03, 21.855999999999998),
    (193602.01666666666, 469345.6925, 21.855999999999998), (193601.71333333335, 469345.6925, 21.855999999999998),
    (193601.41, 469345.6925, 21.855999999999998), (193602.01666666666, 469345.355, 21.855999999999998),
    (193601.71333333335, 469345.355, 21.855999999999998), (193601.41, 469345.355, 21.855999999999998),
    (193601.10666666666, 469345.355, 21.855999999999998), (193600.80333333334, 469345.355, 21.855999999999998),
    (193601.41, 469345.0175, 21.855999999999998), (193601.10666666666, 469345.0175, 21.855999999999998),
    (193600.80333333334, 469345.0175, 21.855999999999998),
]
NEAR_DUPLICATE_SITES = [
    (-36.936336898963525, -9.508890876984978), (-36.7320806786612, -9.27520427373948),
    (-36.93633689896362, -9.508890876985053), (-36.9363441204872, -9.508896761408002),
    (-36.95085774213237, -9.34734748027729), (-36.92859286275029, -9.491951983474776),
    (-37.10160515698933, -9.242356362160889),
]


def _vertex_set(polygon, places=6):
    return {(round(x, places), round(y, places)) for x, y in polygon.tolist()}

def _contains_vertex(polygons, point, tol=1e-6):
    for polygon in polygons:
        for x, y in polygon.tolist():
            if abs(x - point[0]) <= tol and abs(y - point[1]) <= tol:
                return True
    return False


class VoronoiTestCase(unittest.TestCase):

    def assertPartition(self, polygons, envelope, sites=None):
        """Cells are CCW, optionally contain their sites, and tile the envelope."""
        total = 0.0
        origin = torch.tensor([envelope.min_x, envelope.min_y], dtype=torch.float64)
        for polygon in polygons:
            area = compute_polygon_area(polygon.to(torch.float64) - origin)
            self.assertGreater(area, 0.0, "Cells must be counter-clockwise with positive area.")
            total += area
        self.assertAlmostEqual(total / envelope.area, 1.0, places=9)
        if sites is not None:
            for polygon, site in zip(polygons, sites):
                self.assertTrue(point_in_polygon_2d(site, polygon), f"Cell does not contain site {site}.")


class TestBasicDiagrams(VoronoiTestCase):

    def test_single_point_is_empty(self):
        builder = VoronoiDiagramBuilder()
        builder.set_sites(torch.tensor([[150., 200.]]))
        self.assertEqual(builder.get_diagram(), [])
        self.assertEqual(tuple(builder.get_diagram_edges().shape), (0, 2, 2))

    def test_single_point_ordered_is_empty(self):
        self.assertEqual(compute_voronoi_diagram_2d(torch.tensor([[150., 200.]]), ordered=True), [])

    def test_empty_input(self):
        self.assertEqual(compute_voronoi_diagram_2d(torch.empty((0, 2))), [])
        self.assertEqual(compute_voronoi_diagram_2d([]), [])
        edges = compute_voronoi_diagram_2d(torch.empty((0, 2)), edges_only=True)
        self.assertEqual(tuple(edges.shape), (0, 2, 2))

    def test_three_sites(self):
        builder = VoronoiDiagramBuilder()
        builder.set_sites(THREE_SITES)
        self.assertEqual(builder.diagram_envelope, Envelope(25.0, 400.0, 38.0, 395.0))
        polygons = builder.get_diagram()
        self.assertEqual(len(polygons), 3)
        self.assertPartition(polygons, builder.diagram_envelope, THREE_SITES)

        common = (221.20588235294116, 210.91176470588235)
        for polygon in polygons:
            self.assertTrue(_contains_vertex([polygon], common), "All three cells meet at the circumcenter.")
        self.assertEqual(_vertex_set(polygons[0]),
                         {(25.0, 38.0), (25.0, 295.0), (221.205882, 210.911765), (170.024, 38.0)})
        self.assertEqual(_vertex_set(polygons[2]),
                         {(400.0, 369.654206), (400.0, 38.0), (170.024, 38.0), (221.205882, 210.911765)})

    def test_four_sites(self):
        polygons = compute_voronoi_diagram_2d(torch.tensor(FOUR_SITES, dtype=torch.float64))
        self.assertEqual(len(polygons), 4)
        self.assertPartition(polygons, Envelope(110.0, 590.0, -10.0, 500.0), FOUR_SITES)
        self.assertTrue(_contains_vertex(polygons, (306.875, 231.96428571428572)))
        self.assertTrue(_contains_vertex(polygons, (353.515625, 298.59375)))
        self.assertEqual(_vertex_set(polygons[0]),
                         {(110.0, 175.714286), (110.0, 500.0), (310.357143, 500.0),
                          (353.515625, 298.59375), (306.875, 231.964286)})

    def test_fifteen_sites(self):
        builder = VoronoiDiagramBuilder()
        builder.set_sites(torch.tensor(FIFTEEN_SITES))
        polygons = builder.get_diagram()
        self.assertEqual(len(polygons), 15)
        self.assertEqual(builder.diagram_envelope, Envelope(-20.0, 880.0, -210.0, 585.0))
        self.assertPartition(polygons, builder.diagram_envelope, FIFTEEN_SITES)
        self.assertTrue(_contains_vertex(polygons, (450.0, 167.5)))
        self.assertTrue(_contains_vertex(polygons, (318.75, 215.0)))
        builder.get_subdivision().check_consistency()

    def test_collinear_sites_form_slabs(self):
        sites = [(0., 0.), (1., 0.), (2., 0.), (3., 0.)]
        builder = VoronoiDiagramBuilder()
        builder.set_sites(sites)
        polygons = builder.get_diagram()
        self.assertEqual(len(polygons), 4)
        self.assertEqual(builder.diagram_envelope, Envelope(-3.0, 6.0, -3.0, 3.0))
        self.assertPartition(polygons, builder.diagram_envelope, sites)
        self.assertEqual(_vertex_set(polygons[1]), {(0.5, -3.0), (1.5, -3.0), (1.5, 3.0), (0.5, 3.0)})

    def test_cocircular_sites_share_center(self):
        sites = [(0., 0.), (2., 0.), (2., 2.), (0., 2.)]
        polygons = compute_voronoi_diagram_2d(sites)
        self.assertEqual(len(polygons), 4)
        for polygon in polygons:
            self.assertTrue(_contains_vertex([polygon], (1.0, 1.0)))
            self.assertEqual(polygon.shape[0], 4, "Repeated centers of cocircular triangles collapse.")

    def test_six_sites(self):
        builder = VoronoiDiagramBuilder()
        builder.set_sites(SIX_SITES)
        polygons = builder.get_diagram()
        self.assertEqual(len(polygons), 6)
        self.assertEqual(builder.diagram_envelope, Envelope(110.0, 740.0, -50.0, 510.0))
        self.assertPartition(polygons, builder.diagram_envelope, SIX_SITES)
        self.assertTrue(_contains_vertex(polygons, (405.31091180866963, 170.28550074738416)))

    def test_survey_points_far_from_origin(self):
        builder = VoronoiDiagramBuilder()
        builder.set_sites(torch.tensor(SURVEY_POINTS, dtype=torch.float64))
        polygons = builder.get_diagram()
        self.assertEqual(len(polygons), 23)
        envelope = builder.diagram_envelope
        for actual, expected in zip(envelope, (193598.2316666667, 193605.9466666667,
                                               469342.0043333333, 469348.6016666667)):
            self.assertAlmostEqual(actual, expected, places=6)
        self.assertPartition(polygons, envelope, [p[:2] for p in SURVEY_POINTS])

    def test_near_duplicate_sites(self):
        builder = VoronoiDiagramBuilder()
        builder.set_sites(NEAR_DUPLICATE_SITES)
        polygons = builder.get_diagram()
        self.assertEqual(len(polygons), 7)
        self.assertPartition(polygons, builder.diagram_envelope, NEAR_DUPLICATE_SITES)


class TestOrderedDiagrams(VoronoiTestCase):

    def test_ordered_point_input(self):
        polygons = compute_voronoi_diagram_2d(torch.tensor(FOUR_SITES, dtype=torch.float64), ordered=True)
        self.assertPartition(polygons, Envelope(110.0, 590.0, -10.0, 500.0), FOUR_SITES)

    def test_ordered_line_input(self):
        line = [(280., 300.), (380., 230.), (420., 330.), (320., 160.)]
        polygons = compute_voronoi_diagram_2d(line, ordered=True)
        self.assertEqual(len(polygons), 4)
        self.assertPartition(polygons, Envelope(110.0, 590.0, -10.0, 500.0), line)

    def test_ordered_multi_part_input(self):
        parts = [torch.tensor([[320., 160.], [280., 300.]]), torch.tensor([[380., 230.], [420., 330.]])]
        builder = VoronoiDiagramBuilder()
        builder.set_sites(parts, ordered=True)
        polygons = builder.get_diagram()
        sites = [(320., 160.), (280., 300.), (380., 230.), (420., 330.)]
        self.assertPartition(polygons, builder.diagram_envelope, sites)

    def test_ordered_duplicates_raise(self):
        sites = [(0., 0.), (1., 1.), (1., 1.), (2., 2.)]
        builder = VoronoiDiagramBuilder()
        builder.set_sites(sites, ordered=True)
        with self.assertRaises(InvalidOrderedInputError) as ctx:
            builder.get_diagram()
        self.assertEqual(ctx.exception.site_count, 4)
        self.assertEqual(ctx.exception.vertex_count, 3)
        self.assertIsInstance(ctx.exception, ValueError)

        result = builder.compute()
        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, InvalidOrderedInputError)
        self.assertIsNone(result.geometries)

    def test_unordered_duplicates_ok(self):
        sites = [(0., 0.), (1., 1.), (1., 1.), (2., 2.)]
        polygons = compute_voronoi_diagram_2d(sites)
        self.assertEqual(len(polygons), 3)
        self.assertPartition(polygons, Envelope(-2.0, 4.0, -2.0, 4.0), [(0., 0.), (1., 1.), (2., 2.)])

    def test_ordered_within_tolerance_raises(self):
        with self.assertRaises(InvalidOrderedInputError):
            compute_voronoi_diagram_2d([(0., 0.), (0.5, 0.), (10., 10.)], tolerance=1.0, ordered=True)


class TestToleranceMerging(VoronoiTestCase):

    def test_tolerance_6(self):
        sites = [(100, 200), (105, 202), (110, 200), (140, 230), (210, 240),
                 (220, 190), (170, 170), (170, 260), (213, 245), (220, 190)]
        builder = VoronoiDiagramBuilder()
        builder.set_sites(sites, tolerance=6)
        polygons = builder.get_diagram()
        self.assertEqual(len(polygons), 7)
        self.assertEqual(builder.diagram_envelope, Envelope(-20.0, 340.0, 50.0, 380.0))
        self.assertPartition(polygons, builder.diagram_envelope)
        self.assertTrue(any(_vertex_set(p) == {(105.0, 115.0), (105.0, 235.0), (145.0, 195.0)} for p in polygons))

    def test_tolerance_10(self):
        sites = [(170, 270), (177, 275), (190, 230), (230, 250), (210, 290), (240, 280), (240, 250)]
        builder = VoronoiDiagramBuilder()
        builder.set_sites(sites, tolerance=10)
        polygons = builder.get_diagram()
        self.assertEqual(len(polygons), 6, "Sites exactly at the tolerance distance stay distinct.")
        self.assertPartition(polygons, Envelope(100.0, 310.0, 160.0, 360.0))
        self.assertEqual(_vertex_set(polygons[0]), {(100.0, 210.0), (100.0, 360.0), (150.0, 360.0), (200.0, 260.0)})

    def test_tolerance_100(self):
        sites = [(155, 271), (150, 360), (260, 360), (271, 265), (280, 260), (270, 370), (154, 354), (150, 260)]
        builder = VoronoiDiagramBuilder()
        builder.set_sites(sites, tolerance=100)
        polygons = builder.get_diagram()
        self.assertEqual(len(polygons), 4)
        self.assertPartition(polygons, Envelope(20.0, 410.0, 130.0, 500.0))
        expected = [
            {(20.0, 130.0), (20.0, 310.0), (205.0, 310.0), (215.0, 299.0), (215.0, 130.0)},
            {(20.0, 310.0), (20.0, 500.0), (205.0, 500.0), (205.0, 310.0)},
            {(205.0, 500.0), (410.0, 500.0), (410.0, 338.0), (215.0, 299.0), (205.0, 310.0)},
            {(410.0, 338.0), (410.0, 130.0), (215.0, 130.0), (215.0, 299.0)},
        ]
        self.assertCountEqual([_vertex_set(p) for p in polygons], expected)

    def test_larger_tolerance_never_adds_cells(self):
        sites = [(155, 271), (150, 360), (260, 360), (271, 265), (280, 260), (270, 370), (154, 354), (150, 260)]
        counts = [len(compute_voronoi_diagram_2d(sites, tolerance=t)) for t in (0.0, 100.0)]
        self.assertEqual(counts, [8, 4])

    def test_tolerance_beyond_site_extent(self):
        sites = [(0., 0.), (1e-5, 0.), (0., 1e-5)]
        self.assertEqual(compute_voronoi_diagram_2d(sites, tolerance=1.0), [])
        edges = compute_voronoi_diagram_2d(sites, tolerance=1.0, edges_only=True)
        self.assertEqual(tuple(edges.shape), (0, 2, 2))
        with self.assertRaises(InvalidOrderedInputError):
            compute_voronoi_diagram_2d(sites, tolerance=1.0, ordered=True)


class TestDiagramEdges(VoronoiTestCase):

    def _segment_set(self, edges, places=6):
        return {frozenset(((round(a, places), round(b, places)), (round(c, places), round(d, places))))
                for (a, b), (c, d) in edges.tolist()}

    def test_two_sites(self):
        edges = compute_voronoi_diagram_2d([(10., 10.), (20., 20.)], edges_only=True)
        self.assertEqual(tuple(edges.shape), (1, 2, 2))
        self.assertEqual(self._segment_set(edges), {frozenset({(0.0, 30.0), (30.0, 0.0)})})

    def test_three_collinear_sites(self):
        edges = compute_voronoi_diagram_2d([(10., 10.), (20., 20.), (30., 30.)], edges_only=True)
        self.assertEqual(self._segment_set(edges),
                         {frozenset({(0.0, 50.0), (50.0, 0.0)}), frozenset({(-10.0, 40.0), (40.0, -10.0)})})

    def test_edges_match_polygons(self):
        builder = VoronoiDiagramBuilder()
        builder.set_sites(FOUR_SITES)
        polygons = builder.get_diagram()
        edges = builder.get_diagram_edges()
        self.assertEqual(edges.shape[0], 5, "Four sites in convex position have five Delaunay edges.")
        for segment in edges:
            for point in segment.tolist():
                self.assertTrue(_contains_vertex(polygons, point), f"Edge endpoint {point} is not a cell vertex.")

    def test_edge_endpoints_are_exact_cell_vertices(self):
        for sites in ([(10., 10.), (20., 20.), (30., 30.)], FOUR_SITES, SIX_SITES):
            builder = VoronoiDiagramBuilder()
            builder.set_sites(sites)
            vertices = {tuple(p) for polygon in builder.get_diagram() for p in polygon.tolist()}
            for segment in builder.get_diagram_edges().tolist():
                for point in segment:
                    self.assertIn(tuple(point), vertices)


class TestBuilderOptions(VoronoiTestCase):

    def test_clip_envelope_extends_diagram(self):
        builder = VoronoiDiagramBuilder()
        builder.set_sites(THREE_SITES)
        builder.set_clip_envelope(torch.tensor([[0., 0.], [1000., 1000.]]))
        self.assertEqual(builder.diagram_envelope, Envelope(0.0, 1000.0, 0.0, 1000.0))
        self.assertPartition(builder.get_diagram(), builder.diagram_envelope, THREE_SITES)

    def test_margin_factor(self):
        builder = VoronoiDiagramBuilder()
        builder.set_sites(THREE_SITES)
        builder.set_margin_factor(0.2)
        self.assertEqual(builder.diagram_envelope, Envelope(125.0, 300.0, 138.0, 295.0))
        self.assertPartition(builder.get_diagram(), builder.diagram_envelope, THREE_SITES)
        with self.assertRaises(ValueError):
            builder.set_margin_factor(-1.0)

    def test_config_updates(self):
        builder = VoronoiDiagramBuilder()
        self.assertEqual(builder.config, VoronoiConfig())
        builder.set_sites(THREE_SITES, tolerance=2.0, ordered=True)
        self.assertEqual(builder.config.tolerance, 2.0)
        self.assertTrue(builder.config.ordered)
        builder.set_tolerance(0.0)
        builder.set_ordered(False)
        self.assertEqual(builder.config, VoronoiConfig())
        with self.assertRaises(ValueError):
            builder.set_tolerance(-1.0)

    def test_factory_controls_dtype(self):
        builder = VoronoiDiagramBuilder(geometry_factory=TensorGeometryFactory(dtype=torch.float32))
        builder.set_sites(THREE_SITES)
        self.assertTrue(all(p.dtype == torch.float32 for p in builder.get_diagram()))
        self.assertEqual(builder.get_diagram_edges().dtype, torch.float32)
        with self.assertRaises(ValueError):
            TensorGeometryFactory(dtype=torch.int64)

    def test_functional_keeps_input_dtype(self):
        polygons = compute_voronoi_diagram_2d(torch.tensor(THREE_SITES, dtype=torch.float32))
        self.assertTrue(all(p.dtype == torch.float32 for p in polygons))

    def test_compute_result(self):
        builder = VoronoiDiagramBuilder()
        builder.set_sites(THREE_SITES)
        result = builder.compute()
        self.assertIsInstance(result, DiagramResult)
        self.assertTrue(result.ok)
        self.assertEqual(len(result.unwrap()), 3)
        self.assertEqual(builder.vertex_count, 3)

    def test_result_unwrap_raises_stored_error(self):
        result = DiagramResult(error=InternalTopologyError("broken"))
        self.assertFalse(result.ok)
        with self.assertRaises(InternalTopologyError):
            result.unwrap()

    def test_z_values_are_ignored(self):
        with_z = torch.tensor([[150., 200., 1.], [180., 270., 2.], [275., 163., 3.]])
        polygons = compute_voronoi_diagram_2d(with_z)
        self.assertEqual(len(polygons), 3)
        self.assertEqual(polygons[0].shape[1], 2)

if __name__ == '__main__':
    unittest.main()
