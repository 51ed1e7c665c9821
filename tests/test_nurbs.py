"""NURBS evaluator: span search, basis recurrence, rational sum, tabulated form."""

from __future__ import annotations

import math

import pytest
import torch

from lattice_energy.errors import ConfigurationError
from lattice_energy.kernels.nurbs import (
    U_EPS,
    BasisTable,
    NurbsCurve,
    basis_functions,
    evaluate_nurbs,
    find_span,
)

KNOTS = (0.0, 0.0, 0.0, 0.0, 0.5, 1.0, 1.0, 1.0, 1.0)
WEIGHTS = (1.0, 1.0, 1.0, 1.0, 1.0)
POTENTIAL = (1.0, 0.8, 0.6, 0.4, 0.2)
KINETIC = (0.1, 0.2, 0.3, 0.2, 0.1)


def test_constant_control_points_evaluate_to_constant():
    assert evaluate_nurbs(0.37, [1.0] * 5, WEIGHTS, KNOTS) == pytest.approx(1.0, abs=1e-12)


@pytest.mark.parametrize("u", [0.0, 0.1, 0.25, 0.4999, 0.5, 0.75, 0.999, 1.0])
def test_partition_of_unity(u):
    assert evaluate_nurbs(u, [0.27] * 5, WEIGHTS, KNOTS) == pytest.approx(0.27, abs=1e-12)
    span = find_span(min(u, 1.0 - U_EPS), 3, KNOTS)
    assert sum(basis_functions(min(u, 1.0 - U_EPS), span, 3, KNOTS)) == pytest.approx(1.0, abs=1e-12)


def test_rational_weights_preserve_constant():
    assert evaluate_nurbs(0.6, [3.0] * 5, [1.0, 2.0, 1.0, 2.0, 1.0], KNOTS) == pytest.approx(3.0, abs=1e-12)


def test_clamped_curve_interpolates_endpoints():
    assert evaluate_nurbs(0.0, POTENTIAL, WEIGHTS, KNOTS) == pytest.approx(1.0, abs=1e-12)
    at_one = evaluate_nurbs(1.0, POTENTIAL, WEIGHTS, KNOTS)
    assert math.isfinite(at_one)
    assert at_one == pytest.approx(0.2, abs=1e-9)
    # Out-of-domain parameters are clamped, not rejected.
    assert evaluate_nurbs(1.5, POTENTIAL, WEIGHTS, KNOTS) == pytest.approx(at_one)
    assert evaluate_nurbs(-0.5, POTENTIAL, WEIGHTS, KNOTS) == pytest.approx(1.0, abs=1e-12)


@pytest.mark.parametrize("u,expected", [(0.0, 3), (0.49, 3), (0.5, 4), (0.99, 4), (1.0, 4)])
def test_find_span(u, expected):
    assert find_span(u, 3, KNOTS) == expected


def test_shape_mismatch_is_configuration_error():
    with pytest.raises(ConfigurationError):
        evaluate_nurbs(0.5, [1.0, 2.0, 3.0], WEIGHTS, KNOTS)
    with pytest.raises(ConfigurationError):
        evaluate_nurbs(0.5, [1.0] * 5, [1.0] * 4, KNOTS)
    with pytest.raises(ConfigurationError):
        NurbsCurve((1.0,) * 5, WEIGHTS, KNOTS[:-1])
    with pytest.raises(ConfigurationError):
        NurbsCurve((1.0,) * 5, WEIGHTS, (0.0, 0.0, 0.0, 0.0, 0.7, 0.5, 1.0, 1.0, 1.0))


def test_curve_is_callable_and_pure():
    curve = NurbsCurve(KINETIC, WEIGHTS, KNOTS)
    assert curve(0.3) == curve(0.3)
    assert curve(0.3) == pytest.approx(evaluate_nurbs(0.3, KINETIC, WEIGHTS, KNOTS))


def test_basis_table_matches_scalar_evaluator():
    u = torch.linspace(0.0, 1.0, 101, dtype=torch.float64)
    table = BasisTable.build(u, 3, KNOTS)
    for cps in (KINETIC, POTENTIAL, (0.05,) * 5):
        values = table.evaluate(cps, WEIGHTS)
        expected = [evaluate_nurbs(float(x), cps, WEIGHTS, KNOTS) for x in u.tolist()]
        assert values.tolist() == pytest.approx(expected, abs=1e-12)


def test_basis_table_spans_match_bisection():
    u = torch.tensor([0.0, 0.2, 0.5, 0.8, 1.0], dtype=torch.float64)
    table = BasisTable.build(u, 3, KNOTS)
    assert table.span.tolist() == [find_span(min(x, 1.0 - U_EPS), 3, KNOTS) for x in u.tolist()]
    assert table.basis.sum(dim=-1).tolist() == pytest.approx([1.0] * 5, abs=1e-12)
