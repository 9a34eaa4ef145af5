"""
Module: sd_sampler.core
Purpose: ImageGenerator facade with lazy pipeline loading and output handling
Dependencies: PIL, typing, pathlib

This module provides the high-level interface used by the CLI and the REST
server: it builds the sampling pipeline from configuration on first use,
fills in configured defaults, and saves (optionally previews) the results.
"""

from PIL import Image
from typing import Optional, List, Tuple
from pathlib import Path
import logging
import subprocess
import platform
import threading

from sd_sampler.config import Config, get_config
from sd_sampler.pipeline import GenerationConfig, ProgressCallback, StableDiffusionPipeline

logger = logging.getLogger(__name__)


class ImageGenerator:
    """
    Main image generator with lazy pipeline management.

    Features:
    - Lazy pipeline loading (engines load once, on first use)
    - Optional unload after every generation (pipeline.keep_loaded: false)
    - Configured defaults for size, steps and seed
    - Automatic saving with prompt-derived filenames
    - Optional preview in the system image viewer

    Attributes:
        config: Configuration instance
        auto_preview: Whether to automatically open generated images
        device: Device override passed to the engines

    Example:
        >>> gen = ImageGenerator()
        >>> image = gen.generate("a photo of a cat", num_inference_steps=20, seed=42)

        >>> images = gen.generate_batch(["a red apple", "a blue ocean"])
    """

    def __init__(
        self,
        auto_preview: bool = False,
        device: Optional[str] = None,
        pipeline: Optional[StableDiffusionPipeline] = None,
        config: Optional[Config] = None,
    ):
        """
        Initialize ImageGenerator.

        Args:
            auto_preview: Automatically open generated images in system viewer
            device: Override device selection (None = config or auto-detect)
            pipeline: Prebuilt pipeline (None = build from config on first use)
            config: Configuration (None = global config)
        """
        self.config = config or get_config()
        self.auto_preview = auto_preview
        self.device = device or self.config.device

        self._pipeline: Optional[StableDiffusionPipeline] = pipeline
        self.last_saved_path: Optional[Path] = None

        # Guards pipeline construction, unloading and output naming
        self._lock = threading.RLock()

        logger.info("ImageGenerator initialized")
        if auto_preview:
            logger.info("Auto-preview enabled")

    @property
    def is_loaded(self) -> bool:
        return self._pipeline is not None

    @property
    def pipeline(self) -> StableDiffusionPipeline:
        """
        Get the sampling pipeline, loading it if needed.

        Raises:
            ResourceLoadFailure: If the vocabulary or models cannot be loaded
        """
        with self._lock:
            if self._pipeline is None:
                logger.info("Loading sampling pipeline (first use)...")
                self._pipeline = StableDiffusionPipeline.from_resources(
                    self.config.resources_dir,
                    vocab_path=self.config.vocab_path,
                    device=self.device,
                    cache_dir=self.config.cache_dir,
                )
            return self._pipeline

    def generate(
        self,
        prompt: str,
        negative_prompt: Optional[str] = None,
        height: Optional[int] = None,
        width: Optional[int] = None,
        num_inference_steps: Optional[int] = None,
        seed: Optional[int] = None,
        batch_size: Optional[int] = None,
        save_path: Optional[Path] = None,
        auto_save: bool = True,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Image.Image:
        """
        Generate an image from a text prompt.

        Args:
            prompt: Text description of the image to generate
            negative_prompt: Optional text to steer away from
            height: Output height in pixels (default from config)
            width: Output width in pixels (default from config)
            num_inference_steps: Number of denoising steps (default from config)
            seed: Random seed, 0 for non-reproducible (default from config)
            batch_size: Images per latent batch; only the first is returned
            save_path: Where to save the image (None = auto-generate)
            auto_save: Whether to save the image automatically
            progress_callback: Receives GenerationState updates

        Returns:
            PIL Image object

        Raises:
            ValueError: If the prompt is empty or options are invalid
            SetupError: If the pipeline cannot be loaded
            GenerationError: If sampling fails
        """
        image, _ = self.generate_with_path(
            prompt,
            negative_prompt=negative_prompt,
            height=height,
            width=width,
            num_inference_steps=num_inference_steps,
            seed=seed,
            batch_size=batch_size,
            save_path=save_path,
            auto_save=auto_save,
            progress_callback=progress_callback,
        )
        return image

    def generate_with_path(
        self,
        prompt: str,
        negative_prompt: Optional[str] = None,
        height: Optional[int] = None,
        width: Optional[int] = None,
        num_inference_steps: Optional[int] = None,
        seed: Optional[int] = None,
        batch_size: Optional[int] = None,
        save_path: Optional[Path] = None,
        auto_save: bool = True,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Tuple[Image.Image, Optional[Path]]:
        """
        Like generate(), but also return where this call saved its image.

        Concurrent callers each get their own path; last_saved_path only
        reflects whichever call finished last.

        Returns:
            (image, saved path or None when auto_save is off)
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt cannot be empty")

        config = self.build_config(
            width=width,
            height=height,
            num_inference_steps=num_inference_steps,
            seed=seed,
            batch_size=batch_size,
        )

        with self._lock:
            try:
                image = self.pipeline.generate(
                    prompt,
                    negative_prompt=negative_prompt,
                    config=config,
                    progress_callback=progress_callback,
                )
            finally:
                if not self.config.pipeline.get("keep_loaded", True):
                    self.unload_models()

            if not auto_save:
                return image, None

            if save_path is None:
                save_path = self._generate_output_path(prompt)

            save_path = Path(save_path)
            save_path.parent.mkdir(parents=True, exist_ok=True)
            image.save(save_path)
            self.last_saved_path = save_path
            logger.info(f"Image saved to: {save_path}")

        if self.auto_preview:
            self._open_image(save_path)

        return image, save_path

    def generate_batch(
        self,
        prompts: List[str],
        negative_prompt: Optional[str] = None,
        height: Optional[int] = None,
        width: Optional[int] = None,
        num_inference_steps: Optional[int] = None,
        seed: Optional[int] = None,
        auto_save: bool = True,
    ) -> List[Image.Image]:
        """
        Generate one image per prompt, sequentially.

        Args:
            prompts: List of text descriptions
            negative_prompt: Optional negative prompt shared by all prompts
            height: Output height in pixels (default from config)
            width: Output width in pixels (default from config)
            num_inference_steps: Number of denoising steps (default from config)
            seed: Random seed for reproducibility (default from config)
            auto_save: Whether to save images automatically

        Returns:
            List of PIL Image objects
        """
        if not prompts:
            raise ValueError("Prompts list cannot be empty")

        images = []
        for i, prompt in enumerate(prompts, 1):
            logger.info(f"Generating image {i}/{len(prompts)}")

            image = self.generate(
                prompt=prompt,
                negative_prompt=negative_prompt,
                height=height,
                width=width,
                num_inference_steps=num_inference_steps,
                seed=seed,
                auto_save=auto_save,
            )
            images.append(image)

        return images

    def build_config(
        self,
        width: Optional[int] = None,
        height: Optional[int] = None,
        num_inference_steps: Optional[int] = None,
        seed: Optional[int] = None,
        batch_size: Optional[int] = None,
    ) -> GenerationConfig:
        """Generation options with configured defaults filled in."""
        return self.config.default_generation_config(
            width=width,
            height=height,
            steps=num_inference_steps,
            seed=seed,
            batch_size=batch_size,
        )

    def _generate_output_path(self, prompt: str) -> Path:
        """
        Generate output filename from prompt.

        Keeps alphanumerics, spaces, dashes and underscores from the start of
        the prompt and adds a counter when the file already exists.

        Args:
            prompt: The generation prompt

        Returns:
            Path object for the output file
        """
        max_length = self.config.output.get("max_filename_length", 50)
        safe_name = "".join(
            c for c in prompt[:max_length]
            if c.isalnum() or c in (' ', '-', '_')
        ).strip()
        safe_name = safe_name.replace(' ', '_') or "generated_image"

        extension = str(self.config.output.get("image_format", "PNG")).lower()
        output_dir = Path(self.config.output["directory"])
        output_dir.mkdir(parents=True, exist_ok=True)

        final_path = output_dir / f"{safe_name}.{extension}"
        counter = 1
        while final_path.exists():
            final_path = output_dir / f"{safe_name}_{counter}.{extension}"
            counter += 1

        return final_path

    def _open_image(self, image_path: Path) -> None:
        """
        Open image in system default viewer.

        Preview is best effort: failures are logged, never raised.

        Args:
            image_path: Path to the image file
        """
        commands = {
            "Darwin": ["open", str(image_path)],
            "Linux": ["xdg-open", str(image_path)],
        }
        system = platform.system()

        try:
            if system == "Windows":
                subprocess.run(["start", str(image_path)], shell=True, check=True)
            elif system in commands:
                subprocess.run(commands[system], check=True)
            else:
                logger.warning(f"Auto-preview not supported on {system}")
                return

            logger.info(f"Opened image in system viewer: {image_path}")

        except (OSError, subprocess.CalledProcessError) as e:
            logger.warning(f"Failed to open image: {e}")

    def unload_models(self) -> None:
        """
        Unload the inference engines from memory.

        After calling this, the pipeline is rebuilt on next use. Waits for a
        running generation to finish first.
        """
        with self._lock:
            if self._pipeline is not None:
                logger.info("Unloading sampling pipeline...")
                self._pipeline.unload()
                self._pipeline = None

        logger.info("All models unloaded")
