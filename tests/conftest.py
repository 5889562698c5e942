"""Shared fixtures for the fmmplan tests."""

import numpy as np
import pytest

from fmmplan.kernels import LaplaceKernel, LaplaceKernel2D


@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(42)


@pytest.fixture
def laplace():
    """3D Laplace kernel."""
    return LaplaceKernel()


@pytest.fixture
def laplace_2d():
    """2D Laplace kernel."""
    return LaplaceKernel2D()


@pytest.fixture
def cloud_3d(rng):
    """Random sources with positive charges in the unit cube."""
    points = rng.random((600, 3))
    charges = rng.random(600) + 0.5
    return points, charges


@pytest.fixture
def cloud_2d(rng):
    """Random sources with positive charges in the unit square."""
    points = rng.random((500, 2))
    charges = rng.random(500) + 0.5
    return points, charges
