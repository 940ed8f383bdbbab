import pytest
import warp as wp

wp.init()

@pytest.fixture
def device():
    # Kernels run on the CPU so the suite needs no GPU
    return "cpu"
