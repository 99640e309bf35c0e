from __future__ import annotations

import numpy as np
import matplotlib.pyplot as plt

from ..geom.se3 import camera_center
from ..system.outcome import RigLocalization


class TrajectoryVisualizer:
    """Live plot of the localized rig and camera centres."""

    def __init__(self, update_every: int = 10):
        plt.ion()
        self.update_every = max(1, int(update_every))
        self.fig = plt.figure(figsize=(12, 5))
        self.ax1 = self.fig.add_subplot(121, projection='3d')
        self.ax2 = self.fig.add_subplot(122)
        self.rig_centers: list[np.ndarray] = []
        self.cam_centers: list[np.ndarray] = []
        self.num_failed = 0

    def on_frame(self, frame_idx: int, outcome: RigLocalization):
        if outcome.success:
            self.rig_centers.append(camera_center(outcome.T_rig_w))
            self.cam_centers.append(np.array([camera_center(c.T_c_w) for c in outcome.cameras]))
        else:
            self.num_failed += 1
        if (frame_idx + 1) % self.update_every == 0:
            self.update()

    def update(self):
        if len(self.rig_centers) < 2:
            return

        positions = np.array(self.rig_centers)
        x, y, z = positions[:, 0], positions[:, 1], positions[:, 2]
        last_cams = self.cam_centers[-1]

        self.ax1.clear()
        self.ax1.set_xlabel('X')
        self.ax1.set_ylabel('Y')
        self.ax1.set_zlabel('Z')
        self.ax1.set_title(f'Rig trajectory ({len(positions)} localized, {self.num_failed} failed)')
        self.ax1.plot(x, y, z, 'b-', linewidth=1.5, alpha=0.7)
        self.ax1.scatter(x[0], y[0], z[0], c='g', s=100, marker='o', label='Start')
        self.ax1.scatter(last_cams[:, 0], last_cams[:, 1], last_cams[:, 2], c='r', s=40, marker='^', label='Cameras')
        self.ax1.legend()

        self.ax2.clear()
        self.ax2.set_xlabel('X')
        self.ax2.set_ylabel('Z')
        self.ax2.set_title('Top-Down View (X-Z)')
        self.ax2.plot(x, z, 'b-', linewidth=1.5, alpha=0.7)
        self.ax2.scatter(x[0], z[0], c='g', s=100, marker='o', label='Start')
        self.ax2.scatter(last_cams[:, 0], last_cams[:, 2], c='r', s=40, marker='^', label='Cameras')
        self.ax2.grid(True)
        self.ax2.legend()
        self.ax2.axis('equal')

        plt.pause(0.001)

    def close(self, block: bool = True):
        self.update()
        plt.ioff()
        if block:
            plt.show()
        plt.close(self.fig)
