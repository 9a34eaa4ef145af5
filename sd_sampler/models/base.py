"""
Module: sd_sampler.models.base
Purpose: Capability interfaces for the three external inference engines

Each engine maps fixed-shape tensors to fixed-shape tensors and is opaque
beyond that contract.
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from sd_sampler.tensor import Tensor


@runtime_checkable
class TextEncoder(Protocol):
    """Token ids (1, 77) int32 -> conditioning hidden states."""

    def encode(self, tokens: Tensor) -> Tensor:
        ...


@runtime_checkable
class NoisePredictor(Protocol):
    """(latent, timestep, conditioning) -> noise prediction shaped like the latent."""

    def predict(self, latent: Tensor, timestep: int, conditioning: Tensor) -> Tensor:
        ...


@runtime_checkable
class LatentDecoder(Protocol):
    """Latent (batch, 4, h, w) -> pixels (batch, 3, 8h, 8w) with values in [0, 1]."""

    def decode(self, latent: Tensor) -> Tensor:
        ...


@dataclass(frozen=True)
class InferenceEngines:
    """The three engines a pipeline drives."""

    text_encoder: TextEncoder
    noise_predictor: NoisePredictor
    decoder: LatentDecoder

    def unload(self) -> None:
        """Release engine resources where the engine supports it."""
        for engine in (self.text_encoder, self.noise_predictor, self.decoder):
            unload = getattr(engine, "unload", None)
            if callable(unload):
                unload()
