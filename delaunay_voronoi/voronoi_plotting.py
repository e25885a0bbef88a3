import numpy as np
import matplotlib.pyplot as plt
import structlog
import torch
from matplotlib.collections import LineCollection
from matplotlib.patches import Polygon as MplPolygon # Alias to avoid confusion with cell tensors

# Project-specific imports
from .geometry_core import Envelope
from .voronoi_from_delaunay import VoronoiDiagramBuilder

logger = structlog.get_logger()

def plot_voronoi_diagram_2d(
    points: torch.Tensor,
    polygons: list[torch.Tensor] | None = None,
    edges: torch.Tensor | None = None,
    bounds: torch.Tensor | None = None,
    show_sites: bool = True,
    ax=None,
    title: str = "2D Voronoi Diagram"
):
    """
    Plots a 2D Voronoi diagram.

    Args:
        points (torch.Tensor): Tensor of shape (N, 2) representing the input seed points.
        polygons (list[torch.Tensor] | None, optional):
            Voronoi cells as `(K, 2)` tensors, as returned by
            `VoronoiDiagramBuilder.get_diagram`. If both `polygons` and `edges`
            are None, the cells are computed. Defaults to None.
        edges (torch.Tensor | None, optional): Voronoi edges as an `(E, 2, 2)`
            tensor, as returned by `VoronoiDiagramBuilder.get_diagram_edges`.
            Defaults to None.
        bounds (torch.Tensor | None, optional): Shape (2,2) [[min_x, min_y], [max_x, max_y]].
                                                If provided, draws a bounding box and
                                                also makes the computed diagram cover it.
        show_sites (bool): Whether to plot the seed points. Defaults to True.
        ax (matplotlib.axes.Axes | None, optional): Existing axes to plot on.
                                                   If None, a new figure and axes are created.
        title (str, optional): Title for the plot.

    Returns:
        matplotlib.axes.Axes | None: The axes drawn on, or None if there was nothing to plot.
    """
    if points.shape[0] == 0:
        logger.warning("No points provided for Voronoi diagram")
        return None

    if polygons is None and edges is None:
        builder = VoronoiDiagramBuilder()
        builder.set_sites(points)
        if bounds is not None:
            builder.set_clip_envelope(bounds)
        polygons = builder.get_diagram()
        if not polygons:
            logger.info("Fewer than two distinct points, no Voronoi cells to plot", point_count=points.shape[0])

    if ax is None:
        _, ax = plt.subplots()

    if show_sites:
        points_np = points.detach().cpu().to(torch.float64).numpy()
        ax.plot(points_np[:, 0], points_np[:, 1], 'o', label='Seed Points', color='blue')

    for i, cell in enumerate(polygons or []):
        if cell.shape[0] < 3:
            continue
        patch = MplPolygon(cell.detach().cpu().numpy(), closed=True, edgecolor='black', fill=False,
                           label='Voronoi Cells' if i == 0 else None)
        ax.add_patch(patch)

    if edges is not None and edges.shape[0] > 0:
        segments = np.asarray(edges.detach().cpu().to(torch.float64).numpy())
        ax.add_collection(LineCollection(segments, colors='black', linewidths=1.0, label='Voronoi Edges'))

    if bounds is not None:
        envelope = Envelope.from_bounds(bounds)
        rect = MplPolygon(
            [[envelope.min_x, envelope.min_y], [envelope.max_x, envelope.min_y],
             [envelope.max_x, envelope.max_y], [envelope.min_x, envelope.max_y]],
            edgecolor='gray', linestyle='--', fill=False, label='Bounds'
        )
        ax.add_patch(rect)
        pad_x = 0.1 * envelope.width
        pad_y = 0.1 * envelope.height
        ax.set_xlim(envelope.min_x - pad_x, envelope.max_x + pad_x)
        ax.set_ylim(envelope.min_y - pad_y, envelope.max_y + pad_y)
    else:
        ax.autoscale_view()

    ax.set_xlabel("X-axis")
    ax.set_ylabel("Y-axis")
    ax.set_title(title)
    if ax.get_legend_handles_labels()[0]:
        ax.legend()
    ax.set_aspect('equal', adjustable='box')
    return ax
