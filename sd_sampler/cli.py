"""
Module: sd_sampler.cli
Purpose: Command-line interface for sampling, tokenizer and schedule inspection
Dependencies: click, pathlib

Setup failures (missing vocabulary or models) and generation failures are
reported with different messages; both exit with status 1.
"""

import click
from pathlib import Path
from typing import Optional
import logging
import sys

from sd_sampler import __version__
from sd_sampler.config import get_config
from sd_sampler.core import ImageGenerator
from sd_sampler.errors import GenerationError, SetupError
from sd_sampler.pipeline import GenerationState
from sd_sampler.scheduler import DDIMScheduler
from sd_sampler.tokenizer import CLIPTokenizer


def _report_failure(error: Exception) -> None:
    if isinstance(error, SetupError):
        click.echo(f"✗ Setup failure: {error}", err=True)
    elif isinstance(error, GenerationError):
        click.echo(f"✗ Generation failure: {error}", err=True)
    else:
        click.echo(f"✗ Error: {error}", err=True)
    sys.exit(1)


def _echo_progress(state: GenerationState) -> None:
    if state.status == "denoising":
        click.echo(f"   step {state.step}/{state.total_steps} (t={state.timestep})")
    elif state.status in ("encoding", "decoding"):
        click.echo(f"   {state.status}...")


@click.group()
@click.version_option(version=__version__, prog_name="sd-sampler")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """
    sd-sampler - DDIM text-to-image sampling.

    Examples:

    \b
      # Generate a single image
      sd-sampler generate "a photo of a cat" --steps 20 --seed 42

    \b
      # Inspect tokenization and the noise schedule
      sd-sampler tokenize "a photo of a cat"
      sd-sampler schedule
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("prompt")
@click.option("--negative", "-n", "negative_prompt", default=None, help="Negative prompt")
@click.option("--width", "-w", type=int, default=None, help="Output width in pixels (default: 512)")
@click.option("--height", "-h", type=int, default=None, help="Output height in pixels (default: 512)")
@click.option("--steps", "-s", type=int, default=None, help="Number of denoising steps (default: 50, max: 50)")
@click.option("--seed", type=int, default=None, help="Random seed, 0 = non-reproducible")
@click.option(
    "--output", "-o",
    type=click.Path(path_type=Path),
    default=None,
    help="Output file path (default: auto-generated in outputs/)"
)
@click.option("--preview", is_flag=True, help="Open the image in the system viewer")
@click.option("--progress/--no-progress", default=True, help="Print per-step progress")
def generate(
    prompt: str,
    negative_prompt: Optional[str],
    width: Optional[int],
    height: Optional[int],
    steps: Optional[int],
    seed: Optional[int],
    output: Optional[Path],
    preview: bool,
    progress: bool,
):
    """
    Generate a single image from a text prompt.

    PROMPT: Text description of the image to generate
    """
    try:
        click.echo(f"🎨 Generating: {prompt}")
        gen = ImageGenerator(auto_preview=preview)

        image = gen.generate(
            prompt=prompt,
            negative_prompt=negative_prompt,
            width=width,
            height=height,
            num_inference_steps=steps,
            seed=seed,
            save_path=output,
            auto_save=True,
            progress_callback=_echo_progress if progress else None,
        )

        click.echo("✓ Image generated successfully!")
        click.echo(f"  Size: {image.size[0]}x{image.size[1]}")
        click.echo(f"  Saved to: {gen.last_saved_path}")

    except Exception as e:
        _report_failure(e)


@cli.command()
@click.argument("prompts_file", type=click.Path(exists=True, path_type=Path))
@click.option("--negative", "-n", "negative_prompt", default=None, help="Negative prompt for every image")
@click.option("--width", "-w", type=int, default=None, help="Output width in pixels (default: 512)")
@click.option("--height", "-h", type=int, default=None, help="Output height in pixels (default: 512)")
@click.option("--steps", "-s", type=int, default=None, help="Number of denoising steps (default: 50)")
@click.option("--seed", type=int, default=None, help="Random seed, 0 = non-reproducible")
def batch(
    prompts_file: Path,
    negative_prompt: Optional[str],
    width: Optional[int],
    height: Optional[int],
    steps: Optional[int],
    seed: Optional[int],
):
    """
    Generate one image per line of a text file.

    PROMPTS_FILE: Path to text file with one prompt per line
    """
    with open(prompts_file, 'r') as f:
        prompts = [line.strip() for line in f if line.strip()]

    if not prompts:
        click.echo("✗ No prompts found in file", err=True)
        sys.exit(1)

    try:
        click.echo(f"🎨 Generating {len(prompts)} images from {prompts_file}")
        gen = ImageGenerator(auto_preview=False)

        images = gen.generate_batch(
            prompts=prompts,
            negative_prompt=negative_prompt,
            width=width,
            height=height,
            num_inference_steps=steps,
            seed=seed,
            auto_save=True,
        )

        click.echo(f"\n✓ Generated {len(images)} images successfully!")
        click.echo(f"  Saved in: {gen.config.output['directory']}/")

    except Exception as e:
        _report_failure(e)


@cli.command()
@click.argument("text")
@click.option(
    "--vocab",
    type=click.Path(path_type=Path),
    default=None,
    help="Vocabulary JSON (default: from config)"
)
@click.option("--padded", is_flag=True, help="Show the full 77-token sequence")
def tokenize(text: str, vocab: Optional[Path], padded: bool):
    """
    Print the token ids for TEXT.
    """
    try:
        tokenizer = CLIPTokenizer.from_file(vocab or get_config().vocab_path)
    except SetupError as e:
        _report_failure(e)
        return

    ids = tokenizer.encode_ids(text) if padded else tokenizer.tokenize(text)
    click.echo(" ".join(str(i) for i in ids))
    click.echo(f"({len(ids)} tokens)")


@cli.command()
@click.option("--coefficients", "-c", is_flag=True, help="Also print per-step coefficients")
def schedule(coefficients: bool):
    """
    Print the DDIM inference timestep plan.
    """
    scheduler = DDIMScheduler()
    click.echo(
        f"DDIM: {scheduler.train_timesteps} train steps, "
        f"{scheduler.inference_steps} inference steps, "
        f"betas [{scheduler.beta_start}, {scheduler.beta_end}]"
    )

    for index, timestep in enumerate(scheduler.timesteps):
        if coefficients:
            c = scheduler.coefficients(timestep)
            click.echo(
                f"{index:3d}  t={timestep:4d}  "
                f"alpha_prod={c['alpha_prod_t']:.6f}  "
                f"alpha_prod_prev={c['alpha_prod_t_prev']:.6f}"
            )
        else:
            click.echo(f"{index:3d}  t={timestep:4d}")


@cli.command()
def info():
    """
    Display device and configuration information.
    """
    from sd_sampler.utils.device import format_device_info

    click.echo("=== sd-sampler System Info ===\n")
    for line in format_device_info():
        click.echo(line)

    config = get_config()
    click.echo("\n--- Configuration ---")
    click.echo(f"Resources: {config.resources_dir}")
    click.echo(f"Vocabulary: {config.vocab_path}")
    click.echo(f"Default steps: {config.sampling['steps']}")
    click.echo(f"Default size: {config.sampling['width']}x{config.sampling['height']}")
    click.echo(f"Output directory: {config.output['directory']}")
    click.echo(f"Model cache: {config.cache_dir}")


@cli.command()
@click.option("--host", default=None, help="Host to bind to (default: from config)")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (default: from config)")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """
    Run the REST API server.
    """
    from sd_sampler.server import run_server

    api = get_config().api
    run_server(
        host=host or api["host"],
        port=port or api["port"],
        reload=reload or api["reload"],
        log_level=api["log_level"],
    )


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
