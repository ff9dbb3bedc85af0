from __future__ import annotations

from dataclasses import dataclass

import networkx as nx
import numpy as np

from .grid import PlanningUnits


@dataclass
class BoundaryTerms:
    """Linearized boundary penalty: per-unit coefficients plus one term per adjacent pair."""

    unit_coefficients: np.ndarray
    pair_first: np.ndarray
    pair_second: np.ndarray
    pair_coefficients: np.ndarray

    @property
    def n_pairs(self) -> int:
        return len(self.pair_first)


def build_boundary_graph(
    planning_units: PlanningUnits, *, verbose: bool = False
) -> nx.Graph:
    """
    Build the planning-unit adjacency graph.

    Nodes carry `exposed`, the perimeter length not shared with any other
    planning unit (study-area edge or an undefined neighbour). Edges carry
    `length`, the edge length shared by two rook neighbours.
    """
    G = nx.Graph()
    perimeter = 2.0 * (planning_units.cell_width + planning_units.cell_height)
    n_units = len(planning_units)
    G.add_nodes_from(range(n_units), exposed=perimeter)

    first, second, lengths = planning_units.adjacent_pairs()
    shared = np.zeros(n_units)
    np.add.at(shared, first, lengths)
    np.add.at(shared, second, lengths)

    G.add_weighted_edges_from(
        zip(first.tolist(), second.tolist(), lengths.tolist()), weight="length"
    )
    for node in range(n_units):
        G.nodes[node]["exposed"] = max(0.0, perimeter - float(shared[node]))

    if verbose:
        print(f"Graph built: {G.number_of_nodes()} nodes, {G.number_of_edges()} edges")
    return G


def boundary_terms(
    graph: nx.Graph, penalty: float, edge_factor: float
) -> BoundaryTerms:
    """
    Expand penalty * boundary(x) into linear and pairwise parts:

        boundary(x) = sum_i (edge_factor * exposed_i + sum_j b_ij) x_i
                      - 2 * sum_{i<j} b_ij x_i x_j
    """
    n_units = graph.number_of_nodes()
    unit = np.array(
        [edge_factor * graph.nodes[i]["exposed"] for i in range(n_units)], dtype=float
    )
    first, second, coefs = [], [], []
    for i, j, length in graph.edges(data="length"):
        unit[i] += length
        unit[j] += length
        first.append(min(i, j))
        second.append(max(i, j))
        coefs.append(-2.0 * penalty * length)
    return BoundaryTerms(
        unit_coefficients=penalty * unit,
        pair_first=np.asarray(first, dtype=np.int64),
        pair_second=np.asarray(second, dtype=np.int64),
        pair_coefficients=np.asarray(coefs, dtype=float),
    )


def boundary_length(
    graph: nx.Graph, selection: np.ndarray, edge_factor: float = 1.0
) -> float:
    """Perimeter of the selected region; exposed edges are scaled by `edge_factor`."""
    selected = np.asarray(selection) > 0.5
    total = 0.0
    for node in np.flatnonzero(selected):
        total += edge_factor * graph.nodes[int(node)]["exposed"]
    for i, j, length in graph.edges(data="length"):
        if selected[i] != selected[j]:
            total += length
    return float(total)


def count_patches(graph: nx.Graph, selection: np.ndarray) -> int:
    """Number of contiguous (rook-connected) patches among the selected units."""
    selected = [int(i) for i in np.flatnonzero(np.asarray(selection) > 0.5)]
    return nx.number_connected_components(graph.subgraph(selected))
