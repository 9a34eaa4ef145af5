"""
Track denoising progress with a callback.

The pipeline publishes a GenerationState after encoding, after every
denoising step, before decoding and on completion or failure.
"""

import logging
import time

from sd_sampler import GenerationConfig, GenerationState, StableDiffusionPipeline
from sd_sampler.config import get_config

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main():
    config = get_config()
    pipe = StableDiffusionPipeline.from_resources(
        config.resources_dir,
        vocab_path=config.vocab_path,
        device=config.device,
    )

    started = time.time()

    def on_progress(state: GenerationState) -> None:
        elapsed = time.time() - started
        if state.status == "denoising":
            bar = "#" * int(state.progress * 30)
            logger.info(f"[{bar:<30}] step {state.step}/{state.total_steps} t={state.timestep} ({elapsed:.1f}s)")
        elif state.status == "failed":
            logger.error(f"Failed after {elapsed:.1f}s: {state.error}")
        else:
            logger.info(f"{state.status} ({elapsed:.1f}s)")

    image = pipe.generate(
        "a majestic giraffe in the savanna, golden hour",
        config=GenerationConfig(steps=25, seed=42),
        progress_callback=on_progress,
    )
    image.save("giraffe.png")
    logger.info("✓ Saved giraffe.png")


if __name__ == "__main__":
    main()
