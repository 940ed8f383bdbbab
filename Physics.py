# Physics.py
import math
from contextlib import contextmanager
import numpy as np
import warp as wp
from Accumulator import DeltaAccumulator, DeltaBuffers, accumulate_add
from Constraints import build_distance_constraints, build_bending_constraints
from Profiler import Profiler

# Physical constants
GRAVITY = wp.vec3(0.0, -9.81, 0.0)  # m/s**2, the sheet lies in the y = 0 plane
DT = 0.01  # second
PARTICLE_MASS = 1.0  # kg

# PBD constants
ITERATIONS = 10
DISTANCE_COMPRESSION_STIFFNESS = 1.0
DISTANCE_STRETCH_STIFFNESS = 1.0
BENDING_COMPRESSION_STIFFNESS = 0.1
BENDING_STRETCH_STIFFNESS = 0.1
RELAXATION = 1.0

# Shorter edges and smaller doubled triangle areas are skipped during projection
LENGTH_EPSILON = wp.constant(1.0e-9)
AREA_EPSILON = wp.constant(1.0e-12)

wp.init()

class Simulator:
    def __init__(self, mesh, gravity=GRAVITY, dt=DT, iterations=ITERATIONS,
                 distCompressionStiffness=DISTANCE_COMPRESSION_STIFFNESS,
                 distStretchStiffness=DISTANCE_STRETCH_STIFFNESS,
                 bendCompressionStiffness=BENDING_COMPRESSION_STIFFNESS,
                 bendStretchStiffness=BENDING_STRETCH_STIFFNESS,
                 pinned=None, particleMass=PARTICLE_MASS, relaxation=RELAXATION,
                 fixedPointScale=None, enableBending=True, maxStepsPerFrame=None,
                 device=None, profile=False, verbose=False):
        if not dt > 0.0:
            raise ValueError(f"fixed timestep must be positive, got {dt}")
        if int(iterations) != iterations or iterations < 1:
            raise ValueError(f"iteration count must be an integer >= 1, got {iterations}")
        if not relaxation > 0.0:
            raise ValueError(f"relaxation must be positive, got {relaxation}")
        if maxStepsPerFrame is not None and maxStepsPerFrame < 1:
            raise ValueError(f"maxStepsPerFrame must be >= 1, got {maxStepsPerFrame}")
        if len(gravity) != 3:
            raise ValueError(f"gravity must be a 3-vector, got {gravity}")

        self.mesh = mesh
        self.numParticles = mesh.numVertices
        self.gravity = wp.vec3(float(gravity[0]), float(gravity[1]), float(gravity[2]))
        self.dt = float(dt)
        self.iterations = int(iterations)
        self.relaxation = float(relaxation)
        self.fixedPointScale = fixedPointScale
        self.enableBending = enableBending
        self.maxStepsPerFrame = maxStepsPerFrame
        self.device = wp.get_device(device)
        self.profiler = Profiler() if profile else None

        self.simulatedMask = self.make_simulated_mask(pinned)
        masses = np.broadcast_to(np.asarray(particleMass, dtype=np.float64), (self.numParticles,))
        if np.any(masses <= 0.0):
            raise ValueError("particle masses must be positive")
        self.masses = masses.copy()

        # Constraints are built once from the rest pose and never change
        self.distanceConstraints = build_distance_constraints(
            mesh, distCompressionStiffness, distStretchStiffness)
        self.bendingConstraints = build_bending_constraints(
            mesh, bendCompressionStiffness, bendStretchStiffness)

        self.timeAccumulator = 0.0
        self.stepCount = 0
        self.closed = False
        self.init_simulator()

        if verbose:
            print("Create Success")
            print(f"# of particles : {self.numParticles}")
            print(f"# of triangles : {mesh.numTriangles}")
            print(f"# of distance constraints : {self.numEdges}")
            print(f"# of bending constraints : {self.numBends}")
            print(f"# of pinned particles : {int(np.count_nonzero(~self.simulatedMask))}")

    def make_simulated_mask(self, pinned):
        mask = np.ones(self.numParticles, dtype=bool)
        if pinned is None:
            return mask
        pinned = np.asarray(list(pinned), dtype=np.int64).reshape(-1)
        if len(pinned) > 0 and (pinned.min() < 0 or pinned.max() >= self.numParticles):
            raise ValueError(f"pinned particle index outside [0, {self.numParticles})")
        mask[pinned] = False
        return mask

    def init_simulator(self):
        # Vertices
        invMasses = np.where(self.simulatedMask, 1.0 / self.masses, 0.0)
        positions = self.mesh.positions.astype(np.float32)
        self.positions = wp.array(positions, dtype=wp.vec3, device=self.device)
        self.prev_positions = wp.array(positions, dtype=wp.vec3, device=self.device)
        self.predicted = wp.array(positions, dtype=wp.vec3, device=self.device)
        self.velocities = wp.zeros(self.numParticles, dtype=wp.vec3, device=self.device)
        self.invMasses = wp.array(invMasses.astype(np.float32), dtype=wp.float32, device=self.device)
        self.simulated = wp.array(self.simulatedMask.astype(np.int32), dtype=wp.int32, device=self.device)

        # Distance constraints
        dist = self.distanceConstraints
        self.numEdges = len(dist)
        self.edgeIds = wp.array(dist.edges.reshape(-1, 2), dtype=wp.int32, device=self.device)
        self.restLengths = wp.array(dist.restLengths.astype(np.float32), dtype=wp.float32, device=self.device)
        self.edgeCompression = wp.array(dist.compressionStiffness.astype(np.float32), dtype=wp.float32, device=self.device)
        self.edgeStretch = wp.array(dist.stretchStiffness.astype(np.float32), dtype=wp.float32, device=self.device)

        # Bending constraints
        bend = self.bendingConstraints
        self.numBends = len(bend)
        self.bendIds = wp.array(bend.ids.reshape(-1, 4), dtype=wp.int32, device=self.device)
        self.restAngles = wp.array(bend.restAngles.astype(np.float32), dtype=wp.float32, device=self.device)
        self.bendCompression = wp.array(bend.compressionStiffness.astype(np.float32), dtype=wp.float32, device=self.device)
        self.bendStretch = wp.array(bend.stretchStiffness.astype(np.float32), dtype=wp.float32, device=self.device)

        self.accumulator = DeltaAccumulator(self.numParticles, self.device, self.fixedPointScale)

    def launch(self, kernel, dim, inputs):
        """Run kernel once per work item; launches on one device execute in order"""
        if dim == 0:
            return
        wp.launch(kernel=kernel, dim=dim, inputs=inputs, device=self.device)

    @contextmanager
    def phase(self, name):
        if self.profiler is None:
            yield
        else:
            with self.profiler.profile_scope(name, device=self.device):
                yield

    def step(self):
        """Advance the cloth by exactly one fixed timestep"""
        self.check_open()
        dt = self.dt
        with self.phase("step"):
            with self.phase("forces"):
                self.launch(apply_forces, self.numParticles,
                            [self.velocities, self.simulated, self.gravity, dt])
            with self.phase("predict"):
                self.launch(predict_positions, self.numParticles,
                            [self.positions, self.velocities, self.simulated, self.predicted, dt])

            for _ in range(self.iterations):
                with self.phase("project"):
                    self.launch(solve_distance_constraints, self.numEdges,
                                [self.predicted, self.invMasses, self.edgeIds, self.restLengths,
                                 self.edgeCompression, self.edgeStretch, self.accumulator.buffers])
                    if self.enableBending:
                        self.launch(solve_bending_constraints, self.numBends,
                                    [self.predicted, self.invMasses, self.bendIds, self.restAngles,
                                     self.bendCompression, self.bendStretch, self.accumulator.buffers])
                with self.phase("average"):
                    self.accumulator.apply(self.predicted, self.simulated, self.relaxation)

            with self.phase("reconcile"):
                self.launch(update_velocities, self.numParticles,
                            [self.positions, self.prev_positions, self.predicted,
                             self.velocities, self.simulated, dt])
        self.stepCount += 1

    def advance(self, frameTime):
        """Bank frameTime and run every whole fixed step that is due.

        Returns the number of steps taken. The leftover time, always in
        [0, dt), carries over to the next call.
        """
        self.check_open()
        if not math.isfinite(frameTime) or frameTime < 0.0:
            raise ValueError(f"frame time must be finite and non-negative, got {frameTime}")

        self.timeAccumulator += frameTime
        steps = 0
        while self.timeAccumulator >= self.dt:
            if self.maxStepsPerFrame is not None and steps >= self.maxStepsPerFrame:
                # Drop the backlog instead of spiralling
                self.timeAccumulator = math.fmod(self.timeAccumulator, self.dt)
                break
            self.step()
            self.timeAccumulator -= self.dt
            steps += 1
        return steps

    def get_positions(self):
        self.check_open()
        return self.positions.numpy().astype(np.float64)

    def get_velocities(self):
        self.check_open()
        return self.velocities.numpy().astype(np.float64)

    def get_predicted(self):
        self.check_open()
        return self.predicted.numpy().astype(np.float64)

    def sync_mesh(self):
        """Copy the current particle positions back into the mesh"""
        self.mesh.positions[:] = self.get_positions()

    def reset(self):
        """Return every particle to the rest pose at rest"""
        self.check_open()
        rest = self.mesh.restPositions.astype(np.float32)
        for array in (self.positions, self.prev_positions, self.predicted):
            array.assign(rest)
        self.velocities.zero_()
        self.accumulator.reset()
        self.timeAccumulator = 0.0
        self.stepCount = 0

    def check_open(self):
        if self.closed:
            raise RuntimeError("simulator has been closed")

    def close(self):
        if self.closed:
            return
        wp.synchronize_device(self.device)
        self.accumulator.release()
        self.positions = self.prev_positions = self.predicted = None
        self.velocities = self.invMasses = self.simulated = None
        self.edgeIds = self.restLengths = self.edgeCompression = self.edgeStretch = None
        self.bendIds = self.restAngles = self.bendCompression = self.bendStretch = None
        self.accumulator = None
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

@wp.kernel
def apply_forces(velocities: wp.array(dtype=wp.vec3),
                 simulated: wp.array(dtype=wp.int32),
                 gravity: wp.vec3,
                 dt: float):
    vNr = wp.tid()
    if simulated[vNr] != 0:
        velocities[vNr] = velocities[vNr] + gravity * dt

@wp.kernel
def predict_positions(positions: wp.array(dtype=wp.vec3),
                      velocities: wp.array(dtype=wp.vec3),
                      simulated: wp.array(dtype=wp.int32),
                      predicted: wp.array(dtype=wp.vec3),
                      dt: float):
    vNr = wp.tid()
    if simulated[vNr] != 0:
        predicted[vNr] = positions[vNr] + velocities[vNr] * dt
    else:
        predicted[vNr] = positions[vNr]

@wp.kernel
def solve_distance_constraints(predicted: wp.array(dtype=wp.vec3),
                               invMasses: wp.array(dtype=wp.float32),
                               edgeIds: wp.array2d(dtype=wp.int32),
                               restLengths: wp.array(dtype=wp.float32),
                               compressionStiffness: wp.array(dtype=wp.float32),
                               stretchStiffness: wp.array(dtype=wp.float32),
                               buffers: DeltaBuffers):
    eNr = wp.tid()
    id0 = edgeIds[eNr, 0]
    id1 = edgeIds[eNr, 1]
    w0 = invMasses[id0]
    w1 = invMasses[id1]
    w = w0 + w1
    if w == 0.0:
        return

    d = predicted[id1] - predicted[id0]
    length = wp.length(d)
    if length < LENGTH_EPSILON:
        return

    rest_len = restLengths[eNr]
    stiffness = stretchStiffness[eNr]
    if length < rest_len:
        stiffness = compressionStiffness[eNr]

    C = (length - rest_len) / w * stiffness
    n = d / length
    accumulate_add(buffers, id0, C * w0 * n)
    accumulate_add(buffers, id1, -C * w1 * n)

@wp.kernel
def solve_bending_constraints(predicted: wp.array(dtype=wp.vec3),
                              invMasses: wp.array(dtype=wp.float32),
                              bendIds: wp.array2d(dtype=wp.int32),
                              restAngles: wp.array(dtype=wp.float32),
                              compressionStiffness: wp.array(dtype=wp.float32),
                              stretchStiffness: wp.array(dtype=wp.float32),
                              buffers: DeltaBuffers):
    # Isometric bending (Mueller et al. 2007, appendix A) with the shared
    # edge (i2, i3) and wings i0, i1
    bNr = wp.tid()
    i0 = bendIds[bNr, 0]
    i1 = bendIds[bNr, 1]
    i2 = bendIds[bNr, 2]
    i3 = bendIds[bNr, 3]
    w0 = invMasses[i0]
    w1 = invMasses[i1]
    w2 = invMasses[i2]
    w3 = invMasses[i3]
    if w0 + w1 + w2 + w3 == 0.0:
        return

    origin = predicted[i2]
    e = predicted[i3] - origin
    a = predicted[i0] - origin
    b = predicted[i1] - origin
    ca = wp.cross(e, a)
    cb = wp.cross(e, b)
    la = wp.length(ca)
    lb = wp.length(cb)
    if la < AREA_EPSILON or lb < AREA_EPSILON:
        return

    n1 = ca / la
    n2 = cb / lb
    d = wp.clamp(wp.dot(n1, n2), -1.0, 1.0)

    q0 = (wp.cross(e, n2) + wp.cross(n1, e) * d) / la
    q1 = (wp.cross(e, n1) + wp.cross(n2, e) * d) / lb
    q3 = -(wp.cross(a, n2) + wp.cross(n1, a) * d) / la - (wp.cross(b, n1) + wp.cross(n2, b) * d) / lb
    q2 = -q0 - q1 - q3

    sum_wq = w0 * wp.dot(q0, q0) + w1 * wp.dot(q1, q1) + w2 * wp.dot(q2, q2) + w3 * wp.dot(q3, q3)
    if sum_wq < AREA_EPSILON:
        return

    # acos(d) is the hinge angle; the stored fold angle is pi minus the hinge angle
    C = wp.acos(d) - (wp.pi - restAngles[bNr])
    stiffness = stretchStiffness[bNr]
    if C < 0.0:
        stiffness = compressionStiffness[bNr]

    s = -wp.sqrt(1.0 - d * d) * C / sum_wq * stiffness
    accumulate_add(buffers, i0, w0 * s * q0)
    accumulate_add(buffers, i1, w1 * s * q1)
    accumulate_add(buffers, i2, w2 * s * q2)
    accumulate_add(buffers, i3, w3 * s * q3)

@wp.kernel
def update_velocities(positions: wp.array(dtype=wp.vec3),
                      prevPositions: wp.array(dtype=wp.vec3),
                      predicted: wp.array(dtype=wp.vec3),
                      velocities: wp.array(dtype=wp.vec3),
                      simulated: wp.array(dtype=wp.int32),
                      dt: float):
    vNr = wp.tid()
    if simulated[vNr] != 0:
        velocities[vNr] = (predicted[vNr] - prevPositions[vNr]) / dt
        positions[vNr] = predicted[vNr]
        prevPositions[vNr] = predicted[vNr]
