from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import folium
import geopandas as gpd
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from IPython.display import HTML
from matplotlib import rcParams
from matplotlib.colors import BoundaryNorm, ListedColormap
from matplotlib.patches import Patch

from .constants import IMPORTANCE_BREAKS, IMPORTANCE_COLORS
from .raster import Raster

rcParams.update(
    {
        "font.family": "monospace",
        "axes.titlesize": 14,
        "axes.labelsize": 12,
        "xtick.labelsize": 10,
        "ytick.labelsize": 10,
        "legend.fontsize": 11,
        "figure.titlesize": 16,
    }
)

NOT_SELECTED_COLOR = "#e5e5e5"
SELECTED_COLOR = "#1b7837"
LOCKED_IN_COLOR = "#762a83"
LOCKED_OUT_COLOR = "#b2182b"


@dataclass
class SolutionSummary:
    scenario: str
    solver: str
    status: str
    feature_names: list[str]
    selected: set[str]
    locked_in: set[str] = field(default_factory=set)
    locked_out: set[str] = field(default_factory=set)
    objective: float | None = None
    cost: float | None = None
    gap: float | None = None


def build_solution_summary(problem, solution, scenario: str) -> SolutionSummary:
    """Collect grid ids and headline numbers of a solved scenario."""
    ids = np.asarray(problem.planning_units.grid_ids)
    selected = set()
    cost = None
    if solution.has_selection:
        selected = set(ids[solution.selection.astype(bool)])
        cost = float(problem.cost @ solution.selection)
    return SolutionSummary(
        scenario=scenario,
        solver=solution.solver,
        status=solution.status.value,
        feature_names=list(problem.feature_names),
        selected=selected,
        locked_in=set(ids[problem.locked_in_mask]),
        locked_out=set(ids[problem.locked_out_mask]),
        objective=solution.objective,
        cost=cost,
        gap=solution.gap,
    )


def summary_to_dict(summary: SolutionSummary) -> dict[str, Any]:
    """Convert SolutionSummary into a JSON-serializable dict."""
    return {
        "scenario": summary.scenario,
        "solver": summary.solver,
        "status": summary.status,
        "feature_names": list(summary.feature_names),
        "selected": sorted(summary.selected),
        "locked_in": sorted(summary.locked_in),
        "locked_out": sorted(summary.locked_out),
        "objective": summary.objective,
        "cost": summary.cost,
        "gap": summary.gap,
    }


def summary_from_dict(raw: Mapping[str, Any]) -> SolutionSummary:
    """Rehydrate SolutionSummary from a dictionary representation."""
    return SolutionSummary(
        scenario=raw.get("scenario", ""),
        solver=raw.get("solver", ""),
        status=raw.get("status", ""),
        feature_names=list(raw.get("feature_names", [])),
        selected=set(raw.get("selected", [])),
        locked_in=set(raw.get("locked_in", [])),
        locked_out=set(raw.get("locked_out", [])),
        objective=raw.get("objective"),
        cost=raw.get("cost"),
        gap=raw.get("gap"),
    )


def save_solution_summary(
    summary: SolutionSummary, path: str | Path, *, echo: bool = True
) -> Path:
    """Persist a solution summary to disk so maps can be recreated without solving."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = summary_to_dict(summary)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=True), encoding="utf-8")
    if echo:
        print(f"✓ Solution summary saved to {path}")
    return path


def load_solution_summary(path: str | Path) -> SolutionSummary:
    """Load a previously saved solution summary."""
    path = Path(path)
    payload = json.loads(path.read_text(encoding="utf-8"))
    return summary_from_dict(payload)


# MATPLOTLIB FIGURES


def _extent(raster_like) -> list[float]:
    rows, cols = raster_like.grid_shape if hasattr(raster_like, "grid_shape") else raster_like.shape
    transform = raster_like.transform
    x0, y0 = transform * (0, 0)
    x1, y1 = transform * (cols, rows)
    return [min(x0, x1), max(x0, x1), min(y0, y1), max(y0, y1)]


def _finish(fig: plt.Figure, output_path: str | Path | None) -> plt.Figure:
    if output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, bbox_inches="tight")
    return fig


def plot_layers(
    raster: Raster,
    *,
    ncols: int = 3,
    cmap: str = "viridis",
    title: str | None = None,
    output_path: str | Path | None = None,
) -> plt.Figure:
    """One panel per band (e.g. every species layer, or richness and cost)."""
    n = raster.count
    ncols = max(1, min(ncols, n))
    nrows = int(np.ceil(n / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(4 * ncols, 4 * nrows), squeeze=False)
    extent = _extent(raster)
    for ax, name, band in zip(axes.flat, raster.names, raster.values):
        image = ax.imshow(np.ma.masked_invalid(band), cmap=cmap, extent=extent)
        ax.set_title(name)
        ax.set_axis_off()
        fig.colorbar(image, ax=ax, shrink=0.7)
    for ax in list(axes.flat)[n:]:
        ax.set_visible(False)
    if title:
        fig.suptitle(title)
    return _finish(fig, output_path)


def _selection_grid(problem, selection: np.ndarray) -> np.ndarray:
    """0 not selected, 1 selected, 2 locked in, 3 locked out (NaN outside)."""
    values = np.asarray(selection, dtype=float).copy()
    values[problem.locked_in_mask & (values > 0.5)] = 2
    values[problem.locked_out_mask] = 3
    return problem.planning_units.to_grid(values)


def plot_solutions(
    problem,
    selections: Mapping[str, np.ndarray],
    *,
    ncols: int = 2,
    show_locks: bool = True,
    title: str | None = None,
    output_path: str | Path | None = None,
) -> plt.Figure:
    """Side-by-side maps of several selections over the same planning units."""
    n = len(selections)
    ncols = max(1, min(ncols, n))
    nrows = int(np.ceil(n / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(5 * ncols, 5 * nrows), squeeze=False)
    colors = [NOT_SELECTED_COLOR, SELECTED_COLOR, LOCKED_IN_COLOR, LOCKED_OUT_COLOR]
    cmap = ListedColormap(colors)
    norm = BoundaryNorm([-0.5, 0.5, 1.5, 2.5, 3.5], cmap.N)
    extent = _extent(problem.planning_units)

    for ax, (name, selection) in zip(axes.flat, selections.items()):
        if show_locks:
            grid = _selection_grid(problem, selection)
        else:
            grid = problem.planning_units.to_grid(np.asarray(selection, dtype=float))
        ax.imshow(np.ma.masked_invalid(grid), cmap=cmap, norm=norm, extent=extent)
        ax.set_title(name)
        ax.set_axis_off()
    for ax in list(axes.flat)[n:]:
        ax.set_visible(False)

    legend_elements = [
        Patch(facecolor=NOT_SELECTED_COLOR, edgecolor="black", label="Not selected"),
        Patch(facecolor=SELECTED_COLOR, edgecolor="black", label="Selected"),
        Patch(facecolor=LOCKED_IN_COLOR, edgecolor="black", label="Locked in"),
        Patch(facecolor=LOCKED_OUT_COLOR, edgecolor="black", label="Locked out"),
    ]
    fig.legend(handles=legend_elements, loc="lower center", ncol=4, bbox_to_anchor=(0.5, 0.0))
    if title:
        fig.suptitle(title)
    plt.tight_layout(rect=[0, 0.06, 1, 0.95])
    return _finish(fig, output_path)


def plot_importance(
    problem,
    scores: pd.Series | np.ndarray,
    *,
    breaks: list[float] | None = None,
    colors: list[str] | None = None,
    title: str = "Importance (Ferrier score)",
    output_path: str | Path | None = None,
) -> plt.Figure:
    """Importance map with fixed class breaks; scores above the last break share its color."""
    breaks = list(breaks or IMPORTANCE_BREAKS)
    colors = list(colors or IMPORTANCE_COLORS)
    if len(colors) != len(breaks) - 1:
        raise ValueError(f"Need {len(breaks) - 1} colors for {len(breaks)} breaks.")

    values = np.clip(np.asarray(scores, dtype=float), breaks[0], breaks[-1])
    grid = problem.planning_units.to_grid(values)
    cmap = ListedColormap(colors)
    norm = BoundaryNorm(breaks, cmap.N, clip=True)

    fig, ax = plt.subplots(figsize=(6, 6))
    image = ax.imshow(
        np.ma.masked_invalid(grid),
        cmap=cmap,
        norm=norm,
        extent=_extent(problem.planning_units),
    )
    fig.colorbar(image, ax=ax, shrink=0.7, spacing="uniform")
    ax.set_title(title)
    ax.set_axis_off()
    return _finish(fig, output_path)


# FOLIUM / VECTOR EXPORTS


def _build_legend_html(title: str | None) -> str:
    legend_title = title or "Legend"
    items = [
        (SELECTED_COLOR, "Selected"),
        (LOCKED_IN_COLOR, "Locked in"),
        (LOCKED_OUT_COLOR, "Locked out"),
        (NOT_SELECTED_COLOR, "Not selected"),
    ]
    content_html = "\n".join(
        f'<p><i class="fa fa-square" style="color:{color}"></i> {label}</p>'
        for color, label in items
    )
    return f"""
<div style="position: fixed; top: 50px; left: 50px; background-color: white;
            border: 2px solid grey; z-index: 9999; font-size: 14px; padding: 10px;">
    <strong>{legend_title}</strong>
    {content_html}
</div>
"""


def create_solution_map(
    df: gpd.GeoDataFrame,
    summary: SolutionSummary,
    zoom_start: int = 7,
    title: str | None = None,
) -> folium.Map:
    """Folium map of the planning units colored by selection status."""
    if df.crs is not None:
        df = df.to_crs(epsg=4326)
    minx, miny, maxx, maxy = df.total_bounds
    folium_map = folium.Map(
        location=[(miny + maxy) / 2, (minx + maxx) / 2],
        zoom_start=zoom_start,
        tiles="OpenStreetMap",
    )

    df = df.copy()
    df["status"] = "not selected"
    df.loc[df["grid_id"].isin(summary.selected), "status"] = "selected"
    df.loc[df["grid_id"].isin(summary.locked_in), "status"] = "locked in"
    df.loc[df["grid_id"].isin(summary.locked_out), "status"] = "locked out"
    palette = {
        "selected": SELECTED_COLOR,
        "locked in": LOCKED_IN_COLOR,
        "locked out": LOCKED_OUT_COLOR,
        "not selected": NOT_SELECTED_COLOR,
    }

    folium.GeoJson(
        df[["grid_id", "status", "geometry"]],
        style_function=lambda feature: {
            "fillColor": palette[feature["properties"]["status"]],
            "color": "black",
            "weight": 0.3,
            "fillOpacity": 0.8,
        },
        tooltip=folium.GeoJsonTooltip(fields=["grid_id", "status"]),
    ).add_to(folium_map)

    legend_html = _build_legend_html(title or summary.scenario)
    folium_map.get_root().html.add_child(folium.Element(legend_html))
    return folium_map


def export_solution_vector(
    problem, selection: np.ndarray, path: str | Path, *, echo: bool = True
) -> Path:
    """Write the selected planning units as polygons (.parquet or GeoPackage)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    selection = np.asarray(selection).astype(bool)
    gdf = problem.planning_units.geodataframe(
        cost=problem.cost,
        locked_in=problem.locked_in_mask,
        locked_out=problem.locked_out_mask,
    )
    gdf = gdf.loc[selection].reset_index(drop=True)
    if path.suffix == ".parquet":
        gdf.to_parquet(path)
    else:
        gdf.to_file(path, driver="GPKG")
    if echo:
        print(f"✓ {len(gdf)} selected planning units exported to {path}")
    return path


def format_coverage_table(
    coverage: pd.DataFrame,
    title: str = "Target Coverage",
) -> HTML:
    """Format a coverage summary as an HTML table for notebooks."""
    rows = ""
    for row in coverage.itertuples(index=False):
        mark = "✓" if row.met else "✗"
        rows += f"""
        <tr style="border-bottom: 1px solid #ddd;">
            <td style="padding: 6px 12px;">{row.feature}</td>
            <td style="text-align: right; padding: 6px 12px;">{row.relative_target:.2f}</td>
            <td style="text-align: right; padding: 6px 12px;">{row.relative_held:.3f}</td>
            <td style="text-align: center; padding: 6px 12px;">{mark}</td>
        </tr>"""

    n_met = int(coverage["met"].sum())
    html = f"""
    <div style="margin: 15px 0; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;">
        <h4 style="margin-bottom: 10px; color: #333;">{title}</h4>
        <table style="border-collapse: collapse; width: 100%; max-width: 450px; font-size: 14px;">
            <thead>
                <tr style="border-bottom: 2px solid #333;">
                    <th style="text-align: left; padding: 8px 12px;">Feature</th>
                    <th style="text-align: right; padding: 8px 12px;">Target</th>
                    <th style="text-align: right; padding: 8px 12px;">Held</th>
                    <th style="text-align: center; padding: 8px 12px;">Met</th>
                </tr>
            </thead>
            <tbody>
                {rows}
                <tr style="border-top: 2px solid #333; background-color: #e8f4e8;">
                    <td style="padding: 8px 12px;" colspan="3"><strong>Features meeting targets</strong></td>
                    <td style="text-align: center; padding: 8px 12px;"><strong>{n_met}/{len(coverage)}</strong></td>
                </tr>
            </tbody>
        </table>
    </div>
    """
    return HTML(html)
