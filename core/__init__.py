"""
FMM Core Module

This module contains the tree, context, operator contract, evaluators and
plan façade of the kernel-matrix evaluation plan.
"""

from .cell import Box, BoxType
from .tree import Tree, TreeConfig, InteractionLists, dual_tree_traversal
from .expansion import Expansion, ExpansionStateError, MultipoleExpansion, LocalExpansion
from .operators import ExpansionKernel
from .direct import matvec, p2p
from .kernel_matrix import KernelMatrix
from .context import TreeContext, SingleTreeContext, DualTreeContext
from .evaluator import Evaluator, FMMEvaluator, TreecodeEvaluator, make_evaluator
from .plan import PlanConfig, PlanBase, Plan, make_plan

__all__ = [
    'Box',
    'BoxType',
    'Tree',
    'TreeConfig',
    'InteractionLists',
    'dual_tree_traversal',
    'Expansion',
    'ExpansionStateError',
    'MultipoleExpansion',
    'LocalExpansion',
    'ExpansionKernel',
    'matvec',
    'p2p',
    'KernelMatrix',
    'TreeContext',
    'SingleTreeContext',
    'DualTreeContext',
    'Evaluator',
    'FMMEvaluator',
    'TreecodeEvaluator',
    'make_evaluator',
    'PlanConfig',
    'PlanBase',
    'Plan',
    'make_plan',
]
