"""
Module: sd_sampler.scheduler
Purpose: DDIM noise schedule and deterministic reverse-diffusion step
Dependencies: numpy

The schedule uses linearly spaced betas over 1000 training timesteps and a
fixed plan of 50 inference timesteps (999, 979, ..., 19). step() is a closed
form with no randomness:

    x0      = (x_t - sqrt(1 - a_t) * eps) / sqrt(a_t)
    x_{t-1} = sqrt(a_prev) * x0 + sqrt(1 - a_prev) * eps

where a_t is the cumulative alpha product at t and a_prev the one at t - 1.
"""

from typing import Tuple
import logging

import numpy as np

from sd_sampler.errors import InvariantViolation, ShapeMismatch
from sd_sampler.tensor import Tensor

logger = logging.getLogger(__name__)

BETA_START = 0.00085
BETA_END = 0.012
TRAIN_TIMESTEPS = 1000
INFERENCE_STEPS = 50


class DDIMScheduler:
    """
    Precomputed DDIM schedule with a per-step update rule.

    Attributes:
        betas: Per-timestep noise variance, shape (1000,)
        alphas: 1 - betas
        alphas_cumprod: Running product of alphas
        timesteps: Inference plan, 50 strictly descending integers

    Example:
        >>> scheduler = DDIMScheduler()
        >>> scheduler.timesteps[:3]
        (999, 979, 959)
        >>> latent = scheduler.step(noise_pred, scheduler.timesteps[0], latent)
    """

    def __init__(self):
        self.beta_start = BETA_START
        self.beta_end = BETA_END
        self.train_timesteps = TRAIN_TIMESTEPS
        self.inference_steps = INFERENCE_STEPS

        t = np.arange(self.train_timesteps, dtype=np.float64)
        self.betas = self.beta_start + t * (self.beta_end - self.beta_start) / (self.train_timesteps - 1)
        self.alphas = 1.0 - self.betas
        self.alphas_cumprod = np.cumprod(self.alphas)

        for table in (self.betas, self.alphas, self.alphas_cumprod):
            table.flags.writeable = False

        step_ratio = self.train_timesteps // self.inference_steps
        self.timesteps: Tuple[int, ...] = tuple(
            self.train_timesteps - 1 - i * step_ratio for i in range(self.inference_steps)
        )
        self._timestep_index = {timestep: i for i, timestep in enumerate(self.timesteps)}

        logger.debug(
            f"DDIM schedule ready: {self.train_timesteps} train steps, "
            f"{self.inference_steps} inference steps"
        )

    def index_of(self, timestep: int) -> int:
        """Position of `timestep` in the inference plan."""
        try:
            return self._timestep_index[int(timestep)]
        except KeyError:
            raise InvariantViolation(f"Timestep {timestep} is not part of the inference plan")

    def alpha_prod(self, timestep: int) -> float:
        """Cumulative alpha product at `timestep`."""
        index = int(timestep)
        if not 0 <= index < self.train_timesteps:
            raise InvariantViolation(
                f"Schedule index {timestep} outside [0, {self.train_timesteps})"
            )
        return float(self.alphas_cumprod[index])

    def coefficients(self, timestep: int) -> dict:
        """Scalar coefficients used by step() at `timestep`."""
        prev_timestep = timestep - 1 if timestep > 0 else 0
        alpha_prod_t = self.alpha_prod(timestep)
        alpha_prod_t_prev = self.alpha_prod(prev_timestep)
        return {
            "timestep": int(timestep),
            "prev_timestep": int(prev_timestep),
            "alpha_prod_t": alpha_prod_t,
            "beta_prod_t": 1.0 - alpha_prod_t,
            "alpha_prod_t_prev": alpha_prod_t_prev,
            "beta_prod_t_prev": 1.0 - alpha_prod_t_prev,
        }

    def step(self, model_output: Tensor, timestep: int, sample: Tensor) -> Tensor:
        """
        Compute the previous (less noisy) latent from a noise prediction.

        Args:
            model_output: Predicted noise for `sample` at `timestep`
            timestep: Current timestep, in [0, 1000)
            sample: Current latent x_t

        Returns:
            New tensor x_{t-1} with the same shape as `sample`

        Raises:
            ShapeMismatch: If the prediction and sample shapes differ
            InvariantViolation: If `timestep` is outside the schedule tables
        """
        if model_output.shape != sample.shape:
            raise ShapeMismatch("scheduler noise prediction", sample.shape, model_output.shape)

        c = self.coefficients(timestep)

        x_t = sample.data.astype(np.float32, copy=False)
        eps = model_output.data.astype(np.float32, copy=False)

        pred_original = (x_t - np.float32(np.sqrt(c["beta_prod_t"])) * eps) / np.float32(
            np.sqrt(c["alpha_prod_t"])
        )
        noise_coefficient = np.float32(np.sqrt(c["beta_prod_t_prev"]))
        prev_sample = np.float32(np.sqrt(c["alpha_prod_t_prev"])) * pred_original + noise_coefficient * eps

        return Tensor(prev_sample, sample.shape)
