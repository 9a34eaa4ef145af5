"""
Module: sd_sampler.models.torch_engines
Purpose: PyTorch inference engines backed by diffusers and transformers
Dependencies: torch, diffusers, transformers, numpy

Loads the CLIP text encoder, the UNet noise predictor and the VAE decoder
from a Stable Diffusion resources directory laid out like a diffusers
checkpoint (text_encoder/, unet/, vae/ subfolders).
"""

from pathlib import Path
from typing import Optional, Union
import logging
import time

import numpy as np
import torch
from diffusers import AutoencoderKL, UNet2DConditionModel
from transformers import CLIPTextModel

from sd_sampler.errors import ResourceLoadFailure
from sd_sampler.models.base import InferenceEngines
from sd_sampler.tensor import Tensor
from sd_sampler.utils.device import get_device

logger = logging.getLogger(__name__)


def _dtype_for(device: torch.device) -> torch.dtype:
    # MPS and CUDA run the models in half precision, CPU stays in float32
    if device.type in ("mps", "cuda"):
        return torch.float16
    return torch.float32


class _TorchEngine:
    """Shared tensor conversion and memory release for the torch engines."""

    def __init__(self, model: torch.nn.Module, device: torch.device, dtype: torch.dtype):
        self.model = model
        self.device = device
        self.dtype = dtype

    def _to_torch(self, tensor: Tensor, dtype: Optional[torch.dtype] = None) -> torch.Tensor:
        array = tensor.to_array()
        return torch.from_numpy(np.array(array)).to(self.device, dtype=dtype or self.dtype)

    @staticmethod
    def _from_torch(value: torch.Tensor) -> Tensor:
        return Tensor.from_array(value.detach().to("cpu", dtype=torch.float32).numpy())

    def unload(self) -> None:
        if self.model is None:
            return
        self.model = self.model.to("cpu")
        self.model = None

        if self.device.type == "cuda":
            torch.cuda.empty_cache()
        elif self.device.type == "mps":
            torch.mps.empty_cache()


class TorchTextEncoder(_TorchEngine):
    """CLIP text encoder producing last_hidden_state conditioning."""

    def encode(self, tokens: Tensor) -> Tensor:
        input_ids = self._to_torch(tokens, dtype=torch.long)
        with torch.no_grad():
            hidden_states = self.model(input_ids)[0]
        return self._from_torch(hidden_states)


class TorchNoisePredictor(_TorchEngine):
    """UNet noise-residual predictor."""

    def predict(self, latent: Tensor, timestep: int, conditioning: Tensor) -> Tensor:
        sample = self._to_torch(latent)
        hidden_states = self._to_torch(conditioning)
        if hidden_states.shape[0] != sample.shape[0]:
            hidden_states = hidden_states.expand(sample.shape[0], *hidden_states.shape[1:])

        t = torch.tensor([float(timestep)], device=self.device, dtype=self.dtype)
        with torch.no_grad():
            noise_pred = self.model(sample, t, encoder_hidden_states=hidden_states).sample
        return self._from_torch(noise_pred)


class TorchLatentDecoder(_TorchEngine):
    """VAE decoder mapping latents to pixels in [0, 1]."""

    def decode(self, latent: Tensor) -> Tensor:
        latents = self._to_torch(latent)
        with torch.no_grad():
            # Scale latents back from latent space
            latents = latents / self.model.config.scaling_factor
            image = self.model.decode(latents).sample
            image = (image / 2 + 0.5).clamp(0, 1)
        return self._from_torch(image)


def load_torch_engines(
    resources_dir: Union[str, Path],
    device: Optional[str] = None,
    cache_dir: Optional[str] = None,
) -> InferenceEngines:
    """
    Load the three inference engines from a resources directory.

    Args:
        resources_dir: Local path or Hugging Face model id containing
                       text_encoder/, unet/ and vae/ subfolders
        device: Override device selection (None = auto-detect)
        cache_dir: Optional download cache for remote model ids

    Returns:
        InferenceEngines ready for the pipeline

    Raises:
        ResourceLoadFailure: If any model cannot be loaded
    """
    torch_device = get_device(device)
    dtype = _dtype_for(torch_device)
    source = str(resources_dir)

    logger.info(f"Loading inference engines from {source} on {torch_device} ({dtype})")
    start_time = time.time()

    loaders = (
        ("text_encoder", CLIPTextModel),
        ("unet", UNet2DConditionModel),
        ("vae", AutoencoderKL),
    )
    models = {}
    for subfolder, model_class in loaders:
        try:
            model = model_class.from_pretrained(
                source,
                subfolder=subfolder,
                torch_dtype=dtype,
                cache_dir=cache_dir,
            )
        except Exception as e:
            logger.error(f"Failed to load {subfolder}: {e}")
            raise ResourceLoadFailure(f"{subfolder} model from {source}", str(e)) from e

        models[subfolder] = model.to(torch_device).eval()

    load_time = time.time() - start_time
    logger.info(f"✓ Inference engines loaded in {load_time:.1f}s")

    return InferenceEngines(
        text_encoder=TorchTextEncoder(models["text_encoder"], torch_device, dtype),
        noise_predictor=TorchNoisePredictor(models["unet"], torch_device, dtype),
        decoder=TorchLatentDecoder(models["vae"], torch_device, dtype),
    )
