"""
Test that every method marked with ``override`` matches the signature it
replaces
"""
import importlib
import inspect

import pytest

signature = pytest.importorskip("overrides.signature")

MODULES = [
    "optexpr.differentials",
    "optexpr.errorterms",
    "optexpr.mestimators",
    "optexpr.optimizers",
    "optexpr.optimizers.rprop",
    "optexpr.expressions",
    "optexpr.expressions.homogeneous",
    "optexpr.expressions.matrix",
    "optexpr.expressions.quaternion",
    "optexpr.expressions.rotation",
    "optexpr.expressions.scalar",
    "optexpr.expressions.transformation",
    "optexpr.expressions.vector",
]


def overriddenMethods(moduleName):
    module = importlib.import_module(moduleName)
    for _, cls in inspect.getmembers(module, inspect.isclass):
        if not cls.__module__ == moduleName:
            continue
        for name, attr in vars(cls).items():
            if inspect.isfunction(attr) and getattr(attr, "__override__", False):
                yield cls, name, attr


@pytest.mark.parametrize("moduleName", MODULES)
def test_overridesMatchBase(moduleName):
    count = 0
    for cls, name, method in overriddenMethods(moduleName):
        bases = [base for base in cls.__bases__ if hasattr(base, name)]
        assert bases, f"{cls.__name__}.{name} does not override anything"

        # the first listed base that defines the name is the one checked
        superAttr = inspect.getattr_static(bases[0], name)
        if isinstance(superAttr, property):
            continue
        signature.ensure_signature_is_compatible(getattr(bases[0], name), method)
        count += 1

    if moduleName.startswith("optexpr.expressions."):
        assert count > 0


def test_variadicEvaluateNotMarked():
    # operations take a fixed number of child values, so they cannot satisfy
    # the variadic base signature
    from optexpr.expressions.scalar import ScalarAdd

    assert not getattr(ScalarAdd._evaluate, "__override__", False)
