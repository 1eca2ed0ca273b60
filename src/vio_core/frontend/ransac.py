"""Robust relative pose estimation with RANSAC.

A `SampleConsensusProblem` turns minimal samples of correspondences into
candidate `SE3` models and scores every correspondence against a model;
`Ransac` drives the hypothesize-and-verify loop. All models follow the
ref_Pose_cur convention: p_ref = R @ p_cur + t.

Problems:
- CentralRelativePoseProblem: 5-point (Nister) essential matrix from
  bearing vectors. Translation is a unit direction.
- RotationOnlyProblem: 2-point rotation between bearing vectors, for
  motion without observable translation.
- TranslationOnlyProblem: 2-point translation direction from bearing
  vectors given a known rotation.
- PointCloudProblem: 3-point Arun alignment of 3D points (metric pose).
- PointCloudTranslationProblem: 1-point translation of 3D points given a
  known rotation.

Mono residuals are 1 - cos(angle) between a reference bearing and the
epipolar plane (or the rotated bearing); stereo residuals are Euclidean
distances between aligned 3D points.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import cv2
import numpy as np

from .pose import SE3, skew


@dataclass
class RansacResult:
    """Result of a RANSAC run.

    Attributes:
        success: True if a model with a non-empty consensus set was found
        model: Best model (ref_Pose_cur), None if failed
        inliers: Indices of the inlier correspondences, ascending
        iterations: Number of hypothesize-and-verify iterations run
        residual: Sum of inlier residuals of the best model
    """

    success: bool
    model: SE3 | None = None
    inliers: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=np.int64))
    iterations: int = 0
    residual: float = float("inf")

    @property
    def num_inliers(self) -> int:
        return len(self.inliers)


def _as_points(points: np.ndarray, name: str) -> np.ndarray:
    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"{name} must be Nx3, got {points.shape}")
    return points


def _kabsch(src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    """Rotation R minimizing sum ||dst_i - R @ src_i||^2."""
    H = src.T @ dst
    U, _S, Vt = np.linalg.svd(H)
    d = np.sign(np.linalg.det(Vt.T @ U.T))
    if d == 0.0:
        d = 1.0
    return Vt.T @ np.diag([1.0, 1.0, d]) @ U.T


def _arun(src: np.ndarray, dst: np.ndarray) -> SE3 | None:
    """Rigid alignment dst = R @ src + t (Arun et al.), None if degenerate."""
    src_mean = src.mean(axis=0)
    dst_mean = dst.mean(axis=0)
    src_centered = src - src_mean
    # Collinear or coincident points leave the rotation about their axis free
    singular_values = np.linalg.svd(src_centered, compute_uv=False)
    if len(singular_values) < 2 or singular_values[1] < 1e-9:
        return None
    R = _kabsch(src_centered, dst - dst_mean)
    return SE3(rotation=R, translation=dst_mean - R @ src_mean)


def _epipolar_plane_residuals(
    ref_versors: np.ndarray, cur_versors: np.ndarray, model: SE3
) -> np.ndarray:
    """1 - cos of the angle between each reference bearing and its epipolar plane."""
    E = skew(model.translation_direction) @ model.rotation
    normals = (E @ cur_versors.T).T
    norms = np.linalg.norm(normals, axis=1)
    sines = np.zeros(len(normals))
    ok = norms > 1e-12
    sines[ok] = np.abs(np.sum(ref_versors[ok] * normals[ok], axis=1)) / norms[ok]
    sines = np.clip(sines, 0.0, 1.0)
    return 1.0 - np.sqrt(1.0 - sines * sines)


def _positive_depth_count(
    ref_versors: np.ndarray, rotated_cur: np.ndarray, t: np.ndarray
) -> int:
    """Count correspondences triangulated in front of both cameras.

    Solves lambda_ref * f_ref = lambda_cur * R @ f_cur + t per correspondence.
    """
    a = ref_versors
    b = -rotated_cur
    aa = np.sum(a * a, axis=1)
    bb = np.sum(b * b, axis=1)
    ab = np.sum(a * b, axis=1)
    at = a @ t
    bt = b @ t
    det = aa * bb - ab * ab
    ok = det > 1e-12
    lambda_ref = np.zeros(len(a))
    lambda_cur = np.zeros(len(a))
    lambda_ref[ok] = (bb[ok] * at[ok] - ab[ok] * bt[ok]) / det[ok]
    lambda_cur[ok] = (aa[ok] * bt[ok] - ab[ok] * at[ok]) / det[ok]
    return int(np.count_nonzero(ok & (lambda_ref > 0.0) & (lambda_cur > 0.0)))


class SampleConsensusProblem(ABC):
    """Model hypotheses and residuals over a fixed set of correspondences."""

    sample_size: int = 0

    @property
    @abstractmethod
    def num_correspondences(self) -> int:
        """Return number of correspondences."""

    @abstractmethod
    def compute_models(self, indices: np.ndarray) -> list[SE3]:
        """Return candidate models from a minimal sample (empty if degenerate)."""

    @abstractmethod
    def residuals(self, model: SE3) -> np.ndarray:
        """Return the residual of every correspondence under `model`."""

    def optimize_model(self, model: SE3, inliers: np.ndarray) -> SE3:
        """Refine `model` on its inliers (identity refinement by default)."""
        return model


class CentralRelativePoseProblem(SampleConsensusProblem):
    """5-point relative pose between two views of bearing vectors."""

    sample_size = 5

    def __init__(self, ref_versors: np.ndarray, cur_versors: np.ndarray) -> None:
        self._ref = _as_points(ref_versors, "ref_versors")
        self._cur = _as_points(cur_versors, "cur_versors")
        if len(self._ref) != len(self._cur):
            raise ValueError("Bearing vector sets must have equal length")
        # Normalized image coordinates for the OpenCV solvers
        self._ref_n = self._ref[:, :2] / self._ref[:, 2:3]
        self._cur_n = self._cur[:, :2] / self._cur[:, 2:3]

    @property
    def num_correspondences(self) -> int:
        return len(self._ref)

    def _recover_pose(self, E: np.ndarray, indices: np.ndarray) -> SE3 | None:
        # recoverPose returns R, t with points2 = R @ points1 + t, i.e. ref_Pose_cur
        try:
            n_good, R, t, _mask = cv2.recoverPose(
                E,
                self._cur_n[indices],
                self._ref_n[indices],
                focal=1.0,
                pp=(0.0, 0.0),
            )
        except cv2.error:
            return None
        if n_good <= 0:
            return None
        return SE3(rotation=R, translation=t.flatten())

    def compute_models(self, indices: np.ndarray) -> list[SE3]:
        try:
            # A minimal sample makes OpenCV return every 5-point solution stacked
            E, _mask = cv2.findEssentialMat(
                self._cur_n[indices],
                self._ref_n[indices],
                focal=1.0,
                pp=(0.0, 0.0),
                method=cv2.RANSAC,
                prob=0.999,
                threshold=1e-3,
            )
        except cv2.error:
            return []
        if E is None or E.size == 0 or E.shape[0] % 3 != 0:
            return []

        models = []
        for E_i in E.reshape(-1, 3, 3):
            model = self._recover_pose(E_i, indices)
            if model is not None:
                models.append(model)
        return models

    def residuals(self, model: SE3) -> np.ndarray:
        return _epipolar_plane_residuals(self._ref, self._cur, model)

    def optimize_model(self, model: SE3, inliers: np.ndarray) -> SE3:
        # Re-select the cheirality-consistent decomposition over all inliers
        E = skew(model.translation_direction) @ model.rotation
        refined = self._recover_pose(E, inliers)
        return refined if refined is not None else model


class RotationOnlyProblem(SampleConsensusProblem):
    """2-point rotation between bearing vectors (zero translation)."""

    sample_size = 2

    def __init__(self, ref_versors: np.ndarray, cur_versors: np.ndarray) -> None:
        self._ref = _as_points(ref_versors, "ref_versors")
        self._cur = _as_points(cur_versors, "cur_versors")
        if len(self._ref) != len(self._cur):
            raise ValueError("Bearing vector sets must have equal length")

    @property
    def num_correspondences(self) -> int:
        return len(self._ref)

    def compute_models(self, indices: np.ndarray) -> list[SE3]:
        cur = self._cur[indices]
        if np.linalg.norm(np.cross(cur[0], cur[1])) < 1e-9:
            return []
        return [SE3.from_Rt(_kabsch(cur, self._ref[indices]))]

    def residuals(self, model: SE3) -> np.ndarray:
        rotated = (model.rotation @ self._cur.T).T
        return np.clip(1.0 - np.sum(self._ref * rotated, axis=1), 0.0, 2.0)

    def optimize_model(self, model: SE3, inliers: np.ndarray) -> SE3:
        if len(inliers) < 2:
            return model
        return SE3.from_Rt(_kabsch(self._cur[inliers], self._ref[inliers]))


class TranslationOnlyProblem(SampleConsensusProblem):
    """2-point translation direction between bearing vectors given ref_R_cur.

    With the rotation known, every correspondence constrains the translation
    to be orthogonal to n_i = (R @ f_cur) x f_ref.
    """

    sample_size = 2

    def __init__(
        self,
        ref_versors: np.ndarray,
        cur_versors: np.ndarray,
        ref_R_cur: np.ndarray,
    ) -> None:
        self._ref = _as_points(ref_versors, "ref_versors")
        self._cur = _as_points(cur_versors, "cur_versors")
        if len(self._ref) != len(self._cur):
            raise ValueError("Bearing vector sets must have equal length")
        self._R = np.asarray(ref_R_cur, dtype=np.float64)
        self._rotated_cur = (self._R @ self._cur.T).T
        self._normals = np.cross(self._rotated_cur, self._ref)

    @property
    def num_correspondences(self) -> int:
        return len(self._ref)

    def _orient(self, t: np.ndarray, indices: np.ndarray) -> np.ndarray:
        ref = self._ref[indices]
        rotated = self._rotated_cur[indices]
        if _positive_depth_count(ref, rotated, -t) > _positive_depth_count(
            ref, rotated, t
        ):
            return -t
        return t

    def compute_models(self, indices: np.ndarray) -> list[SE3]:
        t = np.cross(self._normals[indices[0]], self._normals[indices[1]])
        norm = np.linalg.norm(t)
        if norm < 1e-12:
            return []
        t = self._orient(t / norm, indices)
        return [SE3(rotation=self._R, translation=t)]

    def residuals(self, model: SE3) -> np.ndarray:
        return _epipolar_plane_residuals(self._ref, self._cur, model)

    def optimize_model(self, model: SE3, inliers: np.ndarray) -> SE3:
        if len(inliers) < 2:
            return model
        # Direction most orthogonal to all inlier constraints
        _U, _S, Vt = np.linalg.svd(self._normals[inliers])
        t = self._orient(Vt[-1], inliers)
        return SE3(rotation=self._R, translation=t)


class PointCloudProblem(SampleConsensusProblem):
    """3-point rigid alignment of 3D points (Arun's method)."""

    sample_size = 3

    def __init__(self, ref_points: np.ndarray, cur_points: np.ndarray) -> None:
        self._ref = _as_points(ref_points, "ref_points")
        self._cur = _as_points(cur_points, "cur_points")
        if len(self._ref) != len(self._cur):
            raise ValueError("Point sets must have equal length")

    @property
    def num_correspondences(self) -> int:
        return len(self._ref)

    def compute_models(self, indices: np.ndarray) -> list[SE3]:
        model = _arun(self._cur[indices], self._ref[indices])
        return [] if model is None else [model]

    def residuals(self, model: SE3) -> np.ndarray:
        return np.linalg.norm(self._ref - model.transform_points(self._cur), axis=1)

    def optimize_model(self, model: SE3, inliers: np.ndarray) -> SE3:
        refined = _arun(self._cur[inliers], self._ref[inliers])
        return refined if refined is not None else model


class PointCloudTranslationProblem(SampleConsensusProblem):
    """1-point translation between 3D points given ref_R_cur."""

    sample_size = 1

    def __init__(
        self,
        ref_points: np.ndarray,
        cur_points: np.ndarray,
        ref_R_cur: np.ndarray,
    ) -> None:
        self._ref = _as_points(ref_points, "ref_points")
        self._cur = _as_points(cur_points, "cur_points")
        if len(self._ref) != len(self._cur):
            raise ValueError("Point sets must have equal length")
        self._R = np.asarray(ref_R_cur, dtype=np.float64)
        self._translations = self._ref - (self._R @ self._cur.T).T

    @property
    def num_correspondences(self) -> int:
        return len(self._ref)

    def compute_models(self, indices: np.ndarray) -> list[SE3]:
        return [SE3(rotation=self._R, translation=self._translations[indices[0]])]

    def residuals(self, model: SE3) -> np.ndarray:
        return np.linalg.norm(self._translations - model.translation, axis=1)

    def optimize_model(self, model: SE3, inliers: np.ndarray) -> SE3:
        if len(inliers) == 0:
            return model
        return SE3(rotation=self._R, translation=self._translations[inliers].mean(axis=0))


class Ransac:
    """Hypothesize-and-verify driver with an adaptive iteration count.

    The iteration budget shrinks to log(1 - p) / log(1 - w^s) once a model
    with inlier ratio w is found (s = sample size), and never exceeds
    `max_iterations`. Among models, more inliers wins; ties go to the
    lower sum of inlier residuals.
    """

    def __init__(
        self,
        threshold: float,
        max_iterations: int = 100,
        probability: float = 0.99,
        seed: int | None = None,
    ) -> None:
        """Initialize RANSAC.

        Args:
            threshold: Maximum residual of an inlier
            max_iterations: Hard cap on iterations (bounds latency)
            probability: Desired probability of drawing one all-inlier sample
            seed: Seed for sampling; None draws fresh entropy
        """
        if threshold <= 0.0:
            raise ValueError("threshold must be positive")
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        if not 0.0 < probability < 1.0:
            raise ValueError("probability must be in (0, 1)")
        self._threshold = threshold
        self._max_iterations = max_iterations
        self._probability = probability
        self._rng = np.random.default_rng(seed)

    def _adaptive_iterations(self, inlier_ratio: float, sample_size: int) -> int:
        all_inlier_sample = inlier_ratio**sample_size
        if all_inlier_sample >= 1.0 - 1e-12:
            return 1
        if all_inlier_sample <= 0.0:
            return self._max_iterations
        k = math.log(1.0 - self._probability) / math.log(1.0 - all_inlier_sample)
        return int(min(max(math.ceil(k), 1), self._max_iterations))

    def run(self, problem: SampleConsensusProblem) -> RansacResult:
        """Find the model with the largest consensus set."""
        n = problem.num_correspondences
        sample_size = problem.sample_size
        if n < sample_size:
            return RansacResult(success=False)

        best_model: SE3 | None = None
        best_inliers = np.empty(0, dtype=np.int64)
        best_residual = float("inf")
        needed = self._max_iterations
        iterations = 0

        while iterations < needed:
            iterations += 1
            sample = self._rng.choice(n, size=sample_size, replace=False)
            for model in problem.compute_models(sample):
                residuals = problem.residuals(model)
                mask = residuals <= self._threshold
                count = int(np.count_nonzero(mask))
                if count == 0:
                    continue
                score = float(residuals[mask].sum())
                if count > len(best_inliers) or (
                    count == len(best_inliers) and score < best_residual
                ):
                    best_model = model
                    best_inliers = np.flatnonzero(mask)
                    best_residual = score
                    needed = self._adaptive_iterations(count / n, sample_size)

        if best_model is None:
            return RansacResult(success=False, iterations=iterations)

        refined = problem.optimize_model(best_model, best_inliers)
        residuals = problem.residuals(refined)
        mask = residuals <= self._threshold
        if np.count_nonzero(mask) >= len(best_inliers):
            best_model = refined
            best_inliers = np.flatnonzero(mask)
            best_residual = float(residuals[mask].sum())

        return RansacResult(
            success=True,
            model=best_model,
            inliers=best_inliers.astype(np.int64),
            iterations=iterations,
            residual=best_residual,
        )
