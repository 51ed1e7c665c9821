"""Test suite for the lattice energy calculator.

This package contains:
- Unit tests for the numeric helpers, NURBS evaluator and kernels
- Reducer, facade and command-line tests
- End-to-end scenarios over small lattices
"""
