import numpy as np
import warp as wp

# Largest magnitude an int32 fixed-point sum can hold
FIXED_POINT_LIMIT = 2.0**31

wp.init()

@wp.struct
class DeltaBuffers:
    """Per-particle correction sums shared by every constraint thread"""
    delta_sums: wp.array(dtype=wp.vec3)         # Float sums of position corrections
    delta_fixed: wp.array2d(dtype=wp.int32)     # Fixed-point sums, used when fixed_scale > 0
    counts: wp.array(dtype=wp.int32)            # Number of corrections received this pass
    fixed_scale: float                          # Fixed-point units per meter, 0 for float sums

@wp.func
def accumulate_add(buffers: DeltaBuffers, vNr: int, delta: wp.vec3):
    # Atomic adds commute, so the result does not depend on thread order
    if buffers.fixed_scale > 0.0:
        for k in range(3):
            wp.atomic_add(buffers.delta_fixed, vNr, k, wp.int32(wp.round(delta[k] * buffers.fixed_scale)))
    else:
        wp.atomic_add(buffers.delta_sums, vNr, delta)
    wp.atomic_add(buffers.counts, vNr, 1)

class DeltaAccumulator:
    """Owns the (deltaSum, count) slot of every particle.

    Constraint kernels write corrections with accumulate_add() during a
    projection pass; apply() then moves each particle by the average of
    what it received and clears the slots for the next pass.

    With fixedPointScale set, corrections are rounded to integers of
    1/fixedPointScale meters before summing, which makes the sums exact
    and independent of the order of the writers. The summed correction of
    one particle in one pass must stay below 2**31 / fixedPointScale
    meters per axis (about 2 km at the usual scale of 1e6); past that the
    int32 sums wrap.
    """
    def __init__(self, numParticles, device=None, fixedPointScale=None):
        if numParticles < 1:
            raise ValueError(f"accumulator needs at least one particle, got {numParticles}")
        if fixedPointScale is not None and fixedPointScale <= 0.0:
            raise ValueError(f"fixedPointScale must be positive, got {fixedPointScale}")

        self.numParticles = int(numParticles)
        self.device = wp.get_device(device)
        self.fixedPointScale = fixedPointScale

        fixedRows = self.numParticles if fixedPointScale is not None else 1
        self.buffers = DeltaBuffers()
        self.buffers.delta_sums = wp.zeros(self.numParticles, dtype=wp.vec3, device=self.device)
        self.buffers.delta_fixed = wp.zeros((fixedRows, 3), dtype=wp.int32, device=self.device)
        self.buffers.counts = wp.zeros(self.numParticles, dtype=wp.int32, device=self.device)
        self.buffers.fixed_scale = float(fixedPointScale) if fixedPointScale is not None else 0.0

    def _check_alive(self):
        if self.buffers is None:
            raise RuntimeError("accumulator buffers have been released")

    def reset(self):
        self._check_alive()
        self.buffers.delta_sums.zero_()
        self.buffers.delta_fixed.zero_()
        self.buffers.counts.zero_()

    def scatter(self, indices, deltas):
        """Accumulate a batch of (particle, delta) pairs in one parallel launch"""
        self._check_alive()
        indices = np.asarray(indices, dtype=np.int32).reshape(-1)
        deltas = np.asarray(deltas, dtype=np.float32).reshape(-1, 3)
        if len(indices) != len(deltas):
            raise ValueError(f"got {len(indices)} indices for {len(deltas)} deltas")
        if len(indices) == 0:
            return
        if indices.min() < 0 or indices.max() >= self.numParticles:
            raise ValueError(f"particle index outside [0, {self.numParticles})")
        if self.fixedPointScale is not None:
            sums = np.zeros((self.numParticles, 3))
            np.add.at(sums, indices, np.abs(deltas.astype(np.float64)))
            if sums.max() * self.fixedPointScale >= FIXED_POINT_LIMIT:
                raise ValueError(f"deltas exceed the fixed-point range of "
                                 f"{FIXED_POINT_LIMIT / self.fixedPointScale:g} m per particle")

        wp.launch(kernel=scatter_deltas, dim=len(indices), device=self.device,
                  inputs=[wp.array(indices, dtype=wp.int32, device=self.device),
                          wp.array(deltas, dtype=wp.vec3, device=self.device),
                          self.buffers])

    def apply(self, predicted, simulated, relaxation=1.0):
        """Average pass: predicted += relaxation * deltaSum / count, then clear"""
        self._check_alive()
        wp.launch(kernel=average_deltas, dim=self.numParticles, device=self.device,
                  inputs=[predicted, simulated, self.buffers, relaxation])

    def read(self):
        """Host copies of the current sums (in meters) and counts"""
        self._check_alive()
        if self.fixedPointScale is not None:
            sums = self.buffers.delta_fixed.numpy().astype(np.float64) / self.fixedPointScale
        else:
            sums = self.buffers.delta_sums.numpy().astype(np.float64)
        return sums, self.buffers.counts.numpy().copy()

    def release(self):
        self.buffers = None

@wp.kernel
def scatter_deltas(indices: wp.array(dtype=wp.int32),
                   deltas: wp.array(dtype=wp.vec3),
                   buffers: DeltaBuffers):
    tid = wp.tid()
    accumulate_add(buffers, indices[tid], deltas[tid])

@wp.kernel
def average_deltas(predicted: wp.array(dtype=wp.vec3),
                   simulated: wp.array(dtype=wp.int32),
                   buffers: DeltaBuffers,
                   relaxation: float):
    vNr = wp.tid()
    count = buffers.counts[vNr]
    if count > 0 and simulated[vNr] != 0:
        delta = buffers.delta_sums[vNr]
        if buffers.fixed_scale > 0.0:
            delta = wp.vec3(float(buffers.delta_fixed[vNr, 0]),
                            float(buffers.delta_fixed[vNr, 1]),
                            float(buffers.delta_fixed[vNr, 2])) / buffers.fixed_scale
        predicted[vNr] = predicted[vNr] + delta * (relaxation / float(count))

    # Clear the slot for the next projection pass
    buffers.delta_sums[vNr] = wp.vec3(0.0, 0.0, 0.0)
    buffers.counts[vNr] = 0
    if buffers.fixed_scale > 0.0:
        for k in range(3):
            buffers.delta_fixed[vNr, k] = 0
