"""
sd_sampler - DDIM text-to-image sampling orchestration

This package turns a text prompt into a sequence of DDIM denoising steps over
a latent tensor, driving three external inference engines (text encoder,
noise predictor, latent decoder).

Main Components:
    - CLIPTokenizer: Fixed-length tokenizer with greedy sub-word fallback
    - DDIMScheduler: Linear-beta noise schedule and closed-form step
    - StableDiffusionPipeline: Encode, denoise and decode orchestration
    - ImageGenerator: Config-driven facade used by the CLI and REST API

Example:
    >>> from sd_sampler import ImageGenerator
    >>> gen = ImageGenerator()
    >>> image = gen.generate("a photo of a cat", num_inference_steps=20, seed=42)
"""

__version__ = "0.1.0"

from sd_sampler.errors import (
    GenerationError,
    InferenceFailure,
    InvariantViolation,
    ResourceLoadFailure,
    SamplerError,
    SetupError,
    ShapeMismatch,
)
from sd_sampler.tensor import Tensor
from sd_sampler.tokenizer import CLIPTokenizer, Vocabulary
from sd_sampler.scheduler import DDIMScheduler
from sd_sampler.pipeline import GenerationConfig, GenerationState, StableDiffusionPipeline
from sd_sampler.core import ImageGenerator

__all__ = [
    "CLIPTokenizer",
    "DDIMScheduler",
    "GenerationConfig",
    "GenerationError",
    "GenerationState",
    "ImageGenerator",
    "InferenceFailure",
    "InvariantViolation",
    "ResourceLoadFailure",
    "SamplerError",
    "SetupError",
    "ShapeMismatch",
    "StableDiffusionPipeline",
    "Tensor",
    "Vocabulary",
]
