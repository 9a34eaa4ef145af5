"""
Module: sd_sampler.pipeline
Purpose: Text-to-image sampling orchestrator (encode, denoise, decode)
Dependencies: numpy, PIL

StableDiffusionPipeline sequences calls to the three inference engines:

1. Prompt and negative prompt are tokenized and text-encoded as two
   concurrent tasks, joined before sampling starts.
2. A uniform [-1, 1] latent is drawn from a seeded or system random source.
3. The DDIM timesteps are walked largest first; each step calls the noise
   predictor and then the scheduler, strictly in order.
4. The final latent is decoded once into images.

No retries: any engine failure aborts the request and no image is returned.
"""

from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union
import logging
import threading
import time

from PIL import Image

from sd_sampler.errors import InferenceFailure, SamplerError, ShapeMismatch
from sd_sampler.models.base import InferenceEngines
from sd_sampler.rng import MAX_SEED, make_random_source
from sd_sampler.scheduler import DDIMScheduler
from sd_sampler.tensor import Tensor, tensor_to_images
from sd_sampler.tokenizer import CLIPTokenizer

logger = logging.getLogger(__name__)

LATENT_CHANNELS = 4
LATENT_SCALE = 8


@dataclass(frozen=True)
class GenerationConfig:
    """
    Options for a single generation request.

    Attributes:
        steps: Number of denoising steps, at most the scheduler's plan length
        batch_size: Images generated together from one latent batch
        width: Output width in pixels, a positive multiple of 8
        height: Output height in pixels, a positive multiple of 8
        seed: Unsigned 32-bit seed; 0 means non-reproducible
    """

    steps: int = 50
    batch_size: int = 1
    width: int = 512
    height: int = 512
    seed: int = 0

    def validate(self, max_steps: int) -> None:
        """
        Raises:
            ValueError: If any option is outside its allowed range
        """
        if self.steps < 1 or self.steps > max_steps:
            raise ValueError(f"steps must be in [1, {max_steps}], got {self.steps}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        for name, value in (("width", self.width), ("height", self.height)):
            if value < LATENT_SCALE or value % LATENT_SCALE != 0:
                raise ValueError(f"{name} must be a positive multiple of {LATENT_SCALE}, got {value}")
        if not 0 <= self.seed < MAX_SEED:
            raise ValueError(f"seed must be in [0, {MAX_SEED}), got {self.seed}")

    @property
    def latent_shape(self) -> Tuple[int, int, int, int]:
        return (
            self.batch_size,
            LATENT_CHANNELS,
            self.height // LATENT_SCALE,
            self.width // LATENT_SCALE,
        )


@dataclass(frozen=True)
class GenerationState:
    """
    Snapshot of a running generation, delivered to progress callbacks.

    status is one of "encoding", "denoising", "decoding", "completed",
    "failed". progress runs from 0.0 to 1.0 over the denoising steps.
    """

    status: str
    progress: float = 0.0
    step: int = 0
    total_steps: int = 0
    timestep: Optional[int] = None
    images: List[Image.Image] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def image(self) -> Optional[Image.Image]:
        return self.images[0] if self.images else None


ProgressCallback = Callable[[GenerationState], None]


class StableDiffusionPipeline:
    """
    Orchestrates DDIM sampling over external inference engines.

    One pipeline runs at most one generation at a time; concurrent callers
    are serialised. The tokenizer and scheduler tables are shared read-only
    state, everything else is created per request.

    Example:
        >>> pipe = StableDiffusionPipeline.from_resources("resources/sd-v1-5")
        >>> image = pipe.generate(
        ...     "a photo of a cat",
        ...     config=GenerationConfig(steps=20, seed=42),
        ... )
        >>> image.size
        (512, 512)
    """

    def __init__(
        self,
        engines: InferenceEngines,
        tokenizer: CLIPTokenizer,
        scheduler: Optional[DDIMScheduler] = None,
    ):
        self.engines = engines
        self.tokenizer = tokenizer
        self.scheduler = scheduler or DDIMScheduler()
        self._lock = threading.Lock()

    @classmethod
    def from_resources(
        cls,
        resources_dir: Union[str, Path],
        vocab_path: Optional[Union[str, Path]] = None,
        device: Optional[str] = None,
        cache_dir: Optional[str] = None,
    ) -> "StableDiffusionPipeline":
        """
        Build a pipeline with the torch engines and a vocabulary file.

        Args:
            resources_dir: Directory (or model id) with text_encoder/, unet/, vae/
            vocab_path: Vocabulary JSON (default: <resources_dir>/clip_vocab.json)
            device: Override device selection (None = auto-detect)
            cache_dir: Download cache for remote model ids

        Raises:
            ResourceLoadFailure: If the vocabulary or any model cannot be loaded
        """
        vocab_path = Path(vocab_path) if vocab_path else Path(resources_dir) / "clip_vocab.json"
        tokenizer = CLIPTokenizer.from_file(vocab_path)

        from sd_sampler.models.torch_engines import load_torch_engines

        engines = load_torch_engines(resources_dir, device=device, cache_dir=cache_dir)
        return cls(engines, tokenizer)

    def encode_prompt(self, text: str) -> Tensor:
        """Tokenize and text-encode one prompt."""
        tokens = self.tokenizer.encode(text)
        try:
            return self.engines.text_encoder.encode(tokens)
        except SamplerError:
            raise
        except Exception as e:
            raise InferenceFailure("text encoding", str(e)) from e

    def encode_prompts(
        self, prompt: str, negative_prompt: Optional[str] = None
    ) -> Tuple[Tensor, Optional[Tensor]]:
        """
        Encode prompt and negative prompt concurrently and wait for both.

        The first failure on either branch is raised without waiting for the
        other branch's result, but only after it has left the text encoder.
        """
        if negative_prompt is None:
            return self.encode_prompt(prompt), None

        pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="sd-encode")
        try:
            positive = pool.submit(self.encode_prompt, prompt)
            negative = pool.submit(self.encode_prompt, negative_prompt)

            done, _ = wait((positive, negative), return_when=FIRST_EXCEPTION)
            for future in done:
                error = future.exception()
                if error is not None:
                    raise error

            return positive.result(), negative.result()
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

    @staticmethod
    def generate_latents(shape: Tuple[int, ...], seed: int = 0) -> Tensor:
        """Initial latent with elements drawn uniformly from [-1, 1]."""
        source = make_random_source(seed)
        count = 1
        for dim in shape:
            count *= dim
        return Tensor(source.uniform(count, -1.0, 1.0), shape)

    def denoise(
        self,
        latent: Tensor,
        conditioning: Tensor,
        steps: int,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Tensor:
        """
        Run `steps` predictor + scheduler iterations, largest timestep first.

        Raises:
            ShapeMismatch: If the predictor returns a differently shaped tensor
            InferenceFailure: If the predictor fails
        """
        timesteps = self.scheduler.timesteps[:steps]

        for step, timestep in enumerate(timesteps, 1):
            try:
                noise_pred = self.engines.noise_predictor.predict(latent, timestep, conditioning)
            except SamplerError:
                raise
            except Exception as e:
                raise InferenceFailure("noise prediction", str(e), step=step) from e

            if noise_pred.shape != latent.shape:
                raise ShapeMismatch(f"noise prediction at step {step}", latent.shape, noise_pred.shape)

            latent = self.scheduler.step(noise_pred, timestep, latent)
            logger.debug(f"Step {step}/{steps} done (t={timestep})")

            self._notify(progress_callback, GenerationState(
                status="denoising",
                progress=step / steps,
                step=step,
                total_steps=steps,
                timestep=timestep,
            ))

        return latent

    def decode(self, latent: Tensor, width: int, height: int) -> List[Image.Image]:
        """
        Decode the final latent into one image per batch entry.

        Raises:
            ShapeMismatch: If the decoder output is not (batch, 3, height, width)
            InferenceFailure: If the decoder fails
        """
        try:
            pixels = self.engines.decoder.decode(latent)
        except SamplerError:
            raise
        except Exception as e:
            raise InferenceFailure("decoding", str(e)) from e

        expected = (latent.shape[0], 3, height, width)
        if pixels.shape != expected:
            raise ShapeMismatch("decoded image", expected, pixels.shape)

        return tensor_to_images(pixels)

    def generate_images(
        self,
        prompt: str,
        negative_prompt: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> List[Image.Image]:
        """
        Generate a batch of images from a text prompt.

        Args:
            prompt: Text description of the image to generate
            negative_prompt: Optional text encoded alongside the prompt
            config: Generation options (default: GenerationConfig())
            progress_callback: Receives a GenerationState after each phase

        Returns:
            List of batch_size PIL images, each exactly width x height

        Raises:
            ValueError: If the config is invalid
            ShapeMismatch: If an engine returns an unexpected shape
            InferenceFailure: If an engine call fails
        """
        config = config or GenerationConfig()
        config.validate(self.scheduler.inference_steps)

        with self._lock:
            logger.info(
                f"Generating: '{prompt[:50]}' ({config.width}x{config.height}, "
                f"{config.steps} steps, batch {config.batch_size}, seed {config.seed})"
            )
            start_time = time.time()

            try:
                self._notify(progress_callback, GenerationState(status="encoding", total_steps=config.steps))
                conditioning, _negative_conditioning = self.encode_prompts(prompt, negative_prompt)

                latent = self.generate_latents(config.latent_shape, config.seed)
                latent = self.denoise(latent, conditioning, config.steps, progress_callback)

                self._notify(progress_callback, GenerationState(
                    status="decoding", progress=1.0, step=config.steps, total_steps=config.steps
                ))
                images = self.decode(latent, config.width, config.height)

                gen_time = time.time() - start_time
                logger.info(f"✓ Generated {len(images)} image(s) in {gen_time:.2f}s")

                self._notify(progress_callback, GenerationState(
                    status="completed",
                    progress=1.0,
                    step=config.steps,
                    total_steps=config.steps,
                    images=images,
                ))

            except Exception as e:
                logger.error(f"Generation failed: {e}")
                self._notify(progress_callback, GenerationState(
                    status="failed", total_steps=config.steps, error=e
                ))
                raise

            return images

    def generate(
        self,
        prompt: str,
        negative_prompt: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Image.Image:
        """Generate and return the first image of the batch. See generate_images()."""
        return self.generate_images(prompt, negative_prompt, config, progress_callback)[0]

    def unload(self) -> None:
        """Release the inference engines."""
        with self._lock:
            self.engines.unload()
            logger.info("✓ Inference engines unloaded")

    @staticmethod
    def _notify(callback: Optional[ProgressCallback], state: GenerationState) -> None:
        if callback is not None:
            callback(state)
