"""
Optexpr Package
"""

# ------------------------------------------------------------------------------
# Nice outputs via rich
from rich.console import Console

console = Console()

# ------------------------------------------------------------------------------
# Import meta
__all__ = [
    "designvariables",
    "differentials",
    "errorterms",
    "expressions",
    "jacobians",
    "kinematics",
    "mestimators",
    "numerics",
    "optimizers",
    "problem",
    "util",
]
