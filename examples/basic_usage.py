"""
Example: Basic Python API Usage

Direct use of ImageGenerator without the CLI or REST API. Expects the model
resources (text_encoder/, unet/, vae/, clip_vocab.json) in the configured
resources directory.
"""

import numpy as np

from sd_sampler import ImageGenerator, SetupError


def example_single_generation(gen: ImageGenerator):
    """Generate a single 512x512 image."""
    print("=== Single Image Generation ===\n")

    image = gen.generate(
        prompt="a photo of a cat",
        num_inference_steps=20,
        seed=42,
    )

    print(f"✓ Generated {image.size[0]}x{image.size[1]} image")
    print(f"  Saved to {gen.last_saved_path}\n")


def example_negative_prompt(gen: ImageGenerator):
    """Generate a non-square image with a negative prompt."""
    print("=== Negative Prompt, 768x512 ===\n")

    image = gen.generate(
        prompt="a serene mountain lake at sunset",
        negative_prompt="blurry, bad quality",
        width=768,
        height=512,
        num_inference_steps=30,
        seed=7,
    )

    print(f"✓ Generated {image.size[0]}x{image.size[1]} image\n")


def example_reproducibility(gen: ImageGenerator):
    """Same seed, same image."""
    print("=== Reproducibility with Seeds ===\n")

    prompt = "a cute robot reading a book"
    image1 = gen.generate(prompt, seed=42, num_inference_steps=20, auto_save=False)
    image2 = gen.generate(prompt, seed=42, num_inference_steps=20, auto_save=False)

    arr1 = np.array(image1)
    arr2 = np.array(image2)

    if np.array_equal(arr1, arr2):
        print("✓ Images are pixel-perfect identical!")
    else:
        diff_pct = (np.sum(arr1 != arr2) / arr1.size) * 100
        print(f"Images differ by {diff_pct:.2f}% (device non-determinism)")

    print()


if __name__ == "__main__":
    import sys

    print("\nsd-sampler - Basic Python Usage Examples")
    print("=" * 50)
    print()

    gen = ImageGenerator(auto_preview=False)

    try:
        example_single_generation(gen)
        example_negative_prompt(gen)
        example_reproducibility(gen)
    except SetupError as e:
        print(f"\n✗ Setup failure: {e}")
        print("  Check pipeline.resources_dir in config/local.yaml")
        sys.exit(1)

    print("=" * 50)
    print("All examples completed successfully!")
