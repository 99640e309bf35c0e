import numpy as np

def Rt_to_T(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    T = np.eye(4)
    T[:3,:3] = R
    T[:3, 3] = t.reshape(3)
    return T

def inv_T(T: np.ndarray) -> np.ndarray:
    R = T[:3,:3]; t = T[:3,3]
    Ti = np.eye(4)
    Ti[:3,:3] = R.T
    Ti[:3, 3] = -R.T @ t
    return Ti

def pose_from_rotation_center(R: np.ndarray, C: np.ndarray) -> np.ndarray:
    # x_c = R (X - C)  =>  t = -R C
    R = np.asarray(R, dtype=np.float64)
    C = np.asarray(C, dtype=np.float64).reshape(3)
    return Rt_to_T(R, -R @ C)

def camera_center(T_c_w: np.ndarray) -> np.ndarray:
    R = T_c_w[:3,:3]; t = T_c_w[:3,3]
    return -R.T @ t

def camera_pose_in_rig(T_rig_w: np.ndarray, T_ci_c0: np.ndarray | None) -> np.ndarray:
    """Pose of camera i given the rig (camera 0) pose and its sub-pose. None means camera 0."""
    if T_ci_c0 is None:
        return T_rig_w.copy()
    return T_ci_c0 @ T_rig_w

def rig_pose_from_camera(T_ci_w: np.ndarray, T_ci_c0: np.ndarray | None) -> np.ndarray:
    if T_ci_c0 is None:
        return T_ci_w.copy()
    return inv_T(T_ci_c0) @ T_ci_w

def rotation_angle(R: np.ndarray) -> float:
    """Rotation angle of R in radians."""
    c = (np.trace(R) - 1.0) * 0.5
    return float(np.arccos(np.clip(c, -1.0, 1.0)))
