from __future__ import annotations

import pytest

FP64_MODULES = ("test_dmrg_solve", "test_local_system", "test_phi", "test_tt_core")


def pytest_collection_modifyitems(config, items):
    import tinydmrg._backend as tnb
    if tnb.default_float_dtype() != tnb.float64:
        skip = pytest.mark.skip(reason="Accuracy tests require float64; device lacks fp64 support.")
        for item in items:
            if item.module.__name__.rsplit(".", 1)[-1] in FP64_MODULES:
                item.add_marker(skip)
