"""
fmmplan Test Suite

Tests for the tree, operator contract, evaluators and plan façade.
"""
