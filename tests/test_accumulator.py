import numpy as np
import pytest
import warp as wp
from Accumulator import DeltaAccumulator

def averaged(accumulator, device, indices, deltas, start=None, simulated=None):
    n = accumulator.numParticles
    start = np.zeros((n, 3), dtype=np.float32) if start is None else np.asarray(start, dtype=np.float32)
    simulated = np.ones(n, dtype=np.int32) if simulated is None else np.asarray(simulated, dtype=np.int32)
    predicted = wp.array(start, dtype=wp.vec3, device=device)
    accumulator.scatter(indices, deltas)
    accumulator.apply(predicted, wp.array(simulated, dtype=wp.int32, device=device))
    return predicted.numpy()

def random_deltas(seed, numParticles=5, numDeltas=200):
    rng = np.random.default_rng(seed)
    indices = rng.integers(0, numParticles, numDeltas)
    deltas = rng.normal(scale=0.01, size=(numDeltas, 3))
    return indices, deltas

def test_average_of_deltas(device):
    accumulator = DeltaAccumulator(3, device)
    result = averaged(accumulator, device,
                      [0, 0, 2],
                      [[1.0, 0.0, 0.0], [3.0, 0.0, 0.0], [0.0, -2.0, 0.5]],
                      start=[[1.0, 1.0, 1.0]] * 3)
    np.testing.assert_allclose(result, [[3.0, 1.0, 1.0], [1.0, 1.0, 1.0], [1.0, -1.0, 1.5]])

def test_apply_clears_slots(device):
    accumulator = DeltaAccumulator(2, device)
    accumulator.scatter([0, 1], [[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
    sums, counts = accumulator.read()
    np.testing.assert_allclose(sums, [[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
    np.testing.assert_array_equal(counts, [1, 1])

    predicted = wp.zeros(2, dtype=wp.vec3, device=device)
    accumulator.apply(predicted, wp.array(np.ones(2, dtype=np.int32), dtype=wp.int32, device=device))
    sums, counts = accumulator.read()
    assert not sums.any()
    assert not counts.any()

@pytest.mark.parametrize("seed", [0, 1, 2])
def test_float_accumulation_is_order_independent(device, seed):
    indices, deltas = random_deltas(seed)
    reference = averaged(DeltaAccumulator(5, device), device, indices, deltas)

    rng = np.random.default_rng(seed + 100)
    for _ in range(3):
        order = rng.permutation(len(indices))
        result = averaged(DeltaAccumulator(5, device), device, indices[order], deltas[order])
        np.testing.assert_allclose(result, reference, atol=1e-6)

def test_split_batches_match_single_batch(device):
    indices, deltas = random_deltas(7)
    reference = averaged(DeltaAccumulator(5, device), device, indices, deltas)

    accumulator = DeltaAccumulator(5, device)
    accumulator.scatter(indices[1::2], deltas[1::2])
    result = averaged(accumulator, device, indices[::2], deltas[::2])
    np.testing.assert_allclose(result, reference, atol=1e-6)

def test_fixed_point_accumulation_is_bit_identical(device):
    indices, deltas = random_deltas(3, numDeltas=500)
    reference = averaged(DeltaAccumulator(5, device, fixedPointScale=1e6), device, indices, deltas)

    rng = np.random.default_rng(11)
    for _ in range(3):
        order = rng.permutation(len(indices))
        result = averaged(DeltaAccumulator(5, device, fixedPointScale=1e6), device,
                          indices[order], deltas[order])
        np.testing.assert_array_equal(result, reference)

def test_fixed_point_close_to_float(device):
    indices, deltas = random_deltas(5)
    floatResult = averaged(DeltaAccumulator(5, device), device, indices, deltas)
    fixedResult = averaged(DeltaAccumulator(5, device, fixedPointScale=1e6), device, indices, deltas)
    np.testing.assert_allclose(fixedResult, floatResult, atol=1e-5)

def test_pinned_particles_ignore_deltas(device):
    accumulator = DeltaAccumulator(2, device)
    result = averaged(accumulator, device, [0, 1], [[1.0, 1.0, 1.0], [1.0, 1.0, 1.0]],
                      simulated=[0, 1])
    np.testing.assert_array_equal(result[0], [0.0, 0.0, 0.0])
    np.testing.assert_allclose(result[1], [1.0, 1.0, 1.0])
    # The pinned slot is still cleared
    _, counts = accumulator.read()
    assert counts[0] == 0

def test_relaxation_scales_average(device):
    accumulator = DeltaAccumulator(1, device)
    predicted = wp.zeros(1, dtype=wp.vec3, device=device)
    accumulator.scatter([0, 0], [[2.0, 0.0, 0.0], [4.0, 0.0, 0.0]])
    accumulator.apply(predicted, wp.array([1], dtype=wp.int32, device=device), 0.5)
    np.testing.assert_allclose(predicted.numpy(), [[1.5, 0.0, 0.0]])

def test_invalid_arguments(device):
    with pytest.raises(ValueError):
        DeltaAccumulator(0, device)
    with pytest.raises(ValueError):
        DeltaAccumulator(3, device, fixedPointScale=0.0)

    accumulator = DeltaAccumulator(3, device)
    with pytest.raises(ValueError, match="outside"):
        accumulator.scatter([3], [[0.0, 0.0, 0.0]])
    with pytest.raises(ValueError):
        accumulator.scatter([0, 1], [[0.0, 0.0, 0.0]])

def test_released_accumulator(device):
    accumulator = DeltaAccumulator(3, device)
    accumulator.release()
    with pytest.raises(RuntimeError):
        accumulator.reset()
    with pytest.raises(RuntimeError):
        accumulator.read()

def test_fixed_point_range_checked(device):
    accumulator = DeltaAccumulator(2, device, fixedPointScale=1e6)
    # Each delta fits, but partial sums on particle 0 can wrap
    with pytest.raises(ValueError, match="fixed-point range"):
        accumulator.scatter([0, 0], [[1500.0, 0.0, 0.0], [-1500.0, 0.0, 0.0]])
    accumulator.scatter([0, 1], [[1500.0, 0.0, 0.0], [0.0, -1500.0, 0.0]])
    sums, _ = accumulator.read()
    np.testing.assert_allclose(sums, [[1500.0, 0.0, 0.0], [0.0, -1500.0, 0.0]])
