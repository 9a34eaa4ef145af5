"""
Module: sd_sampler.models
Purpose: Inference engine interfaces (text encoder, noise predictor, decoder)

The torch-backed implementations live in sd_sampler.models.torch_engines and
are imported on demand so the core pipeline can run against any engine.
"""

from sd_sampler.models.base import (
    InferenceEngines,
    LatentDecoder,
    NoisePredictor,
    TextEncoder,
)

__all__ = ["InferenceEngines", "LatentDecoder", "NoisePredictor", "TextEncoder"]
