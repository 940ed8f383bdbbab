import time
import numpy as np
from Mesh import ClothMesh
from Physics import Simulator, DT
from Profiler import Profiler

# Cloth sheet
X_SIZE = 32
Y_SIZE = 32
WIDTH = 5.0
HEIGHT = 5.0

# Frame loop
NUM_FRAMES = 300
FRAME_TIME = 1.0 / 60.0  # second
REAL_TIME = False  # sleep between frames and feed measured wall time to the simulator

profiler = Profiler()

@profiler.profile_function()
def build_cloth():
    mesh = ClothMesh.grid(X_SIZE, Y_SIZE, WIDTH, HEIGHT)
    # Hang the sheet from the two corners of its last row
    lastRow = Y_SIZE * (X_SIZE + 1)
    pinned = [lastRow, lastRow + X_SIZE]
    return mesh, pinned

def run_frames(simulator, numFrames, frameTime=FRAME_TIME, realTime=False):
    """Feed numFrames frames to the simulator, returning the steps taken"""
    lastTime = time.perf_counter()
    totalSteps = 0
    for frame in range(numFrames):
        if realTime:
            time.sleep(frameTime)
            now = time.perf_counter()
            elapsed = now - lastTime
            lastTime = now
        else:
            elapsed = frameTime

        totalSteps += simulator.advance(elapsed)

        if frame % 60 == 0:
            positions = simulator.get_positions()
            print(f"frame {frame:4d}  steps {totalSteps:5d}  "
                  f"lowest y {positions[:, 1].min():+.4f}  "
                  f"banked {simulator.timeAccumulator * 1000:.2f}ms")
    return totalSteps

def main():
    mesh, pinned = build_cloth()

    with Simulator(mesh, pinned=pinned, dt=DT, profile=True, verbose=True) as simulator:
        profiler.start_profiling()
        totalSteps = run_frames(simulator, NUM_FRAMES, FRAME_TIME, REAL_TIME)
        profiler.stop_profiling()

        simulator.sync_mesh()
        positions = mesh.positions
        print(f"Finished {totalSteps} steps, cloth spans y in "
              f"[{positions[:, 1].min():.4f}, {positions[:, 1].max():.4f}], "
              f"all finite: {bool(np.all(np.isfinite(positions)))}")

    profiler.print_stats()
    profiler.print_line_stats()
    profiler.print_cprofile_stats()

if __name__ == "__main__":
    main()
