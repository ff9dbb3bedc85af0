"""
Importance (irreplaceability) scores for the planning units of a selection.

Ferrier scores follow Ferrier et al. (2000): for every selected unit and
feature, compare the chance that a random portfolio of the same size meets
the target with and without that unit. Portfolio sums are approximated by a
normal distribution with a finite-population correction.
"""

from __future__ import annotations

from dataclasses import replace

import numpy as np
import pandas as pd
from scipy.stats import norm

from .evaluation import _as_selection, objective_value

_SD_TOLERANCE = 1e-12


def _prob_at_least(mean: np.ndarray, sd: np.ndarray, target: float) -> np.ndarray:
    """P(X >= target) for X ~ N(mean, sd); a step function where sd is zero."""
    step = (mean >= target - 1e-9).astype(float)
    safe_sd = np.where(sd > _SD_TOLERANCE, sd, 1.0)
    smooth = norm.sf(target, loc=mean, scale=safe_sd)
    return np.where(sd > _SD_TOLERANCE, smooth, step)


def _sample_sum_moments(
    mean: np.ndarray, variance: np.ndarray, population: int, size: int
) -> tuple[np.ndarray, np.ndarray]:
    """Mean and sd of the sum of `size` draws without replacement."""
    if size <= 0:
        return np.zeros_like(mean), np.zeros_like(mean)
    if population > 1:
        correction = (population - size) / (population - 1)
    else:
        correction = 0.0
    sd = np.sqrt(np.maximum(size * variance * correction, 0.0))
    return size * mean, sd


def _feature_scores(
    amounts: np.ndarray, target: float, selected: np.ndarray, n_selected: int
) -> np.ndarray:
    n_units = len(amounts)
    scores = np.zeros(n_units)
    if target <= 0 or n_selected == 0:
        return scores

    wt_include = n_selected / n_units
    wt_exclude = 1.0 - wt_include

    own = amounts[selected]
    population = n_units - 1
    if population == 0:
        scores[selected] = 1.0 if own[0] >= target else 0.0
        return scores
    others_mean = (amounts.sum() - own) / population
    others_variance = np.maximum(
        (np.sum(amounts**2) - own**2) / population - others_mean**2, 0.0
    )

    mean_rest, sd_rest = _sample_sum_moments(
        others_mean, others_variance, population, n_selected - 1
    )
    mean_full, sd_full = _sample_sum_moments(
        others_mean, others_variance, population, min(n_selected, population)
    )

    include = wt_include * _prob_at_least(own + mean_rest, sd_rest, target)
    exclude = wt_exclude * _prob_at_least(mean_full, sd_full, target)
    removed = wt_include * _prob_at_least(mean_rest, sd_rest, target)

    denominator = include + exclude - removed
    with np.errstate(divide="ignore", invalid="ignore"):
        value = np.where(denominator > 0, (include - removed) / denominator, 0.0)
    scores[selected] = np.clip(value, 0.0, 1.0)
    return scores


def ferrier_importance(problem, selection) -> pd.DataFrame:
    """
    Per-feature Ferrier scores plus their `total`, one row per planning unit
    (indexed by grid id). Units outside the selection score 0.
    """
    x = _as_selection(problem, selection).astype(bool)
    n_selected = int(x.sum())
    targets = problem.absolute_targets

    columns = {}
    for f, name in enumerate(problem.feature_names):
        columns[name] = _feature_scores(problem.features[f], float(targets[f]), x, n_selected)

    scores = pd.DataFrame(columns, index=pd.Index(problem.planning_units.grid_ids, name="grid_id"))
    scores["total"] = scores.sum(axis=1)
    return scores


def replacement_importance(problem, selection, *, verbose: bool = False) -> pd.DataFrame:
    """
    Re-solve once per selected unit with that unit locked out. The score is
    the objective increase over the given selection, inf when no replacement
    exists (e.g. the unit is locked in or holds an irreplaceable feature).

    Re-solves run at a zero gap whatever the problem's solver settings, and
    scores are clipped at 0 so a suboptimal input selection never yields
    negative importance.
    """
    x = _as_selection(problem, selection)
    baseline = objective_value(problem, x)
    scores = np.zeros(problem.n_units)
    selected = np.flatnonzero(x)
    exact = replace(problem, solver=replace(problem.solver, gap=0.0))

    for count, i in enumerate(selected, start=1):
        if verbose:
            print(f"Replacement importance: re-solving {count}/{len(selected)}")
        mask = np.zeros(problem.n_units, dtype=bool)
        mask[i] = True
        solution = exact.add_locked_out_constraints(mask).solve()
        if not solution.has_selection:
            scores[i] = np.inf
            continue
        scores[i] = max(0.0, objective_value(problem, solution.selection) - baseline)

    return pd.DataFrame(
        {"replacement": scores},
        index=pd.Index(problem.planning_units.grid_ids, name="grid_id"),
    )


def rarity_weighted_richness(problem, selection, rescale: bool = True) -> pd.DataFrame:
    """Sum over features of the share of each feature's total held by a unit."""
    x = _as_selection(problem, selection)
    totals = problem.feature_totals
    with np.errstate(divide="ignore", invalid="ignore"):
        shares = np.where(totals[:, None] > 0, problem.features / totals[:, None], 0.0)
    scores = shares.sum(axis=0) * x
    if rescale and scores.max() > 0:
        scores = scores / scores.max()
    return pd.DataFrame(
        {"rwr": scores},
        index=pd.Index(problem.planning_units.grid_ids, name="grid_id"),
    )
