"""
Module: sd_sampler.server
Purpose: FastAPI REST server for image generation
Dependencies: fastapi, uvicorn, pydantic

Exposes the sampling pipeline over HTTP. Setup failures (missing vocabulary
or model resources) answer 503, invalid options 422, and generation failures
500, so clients can tell a broken install from a failed request.
"""

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
from typing import Optional
import logging
import base64
import threading
from io import BytesIO

from sd_sampler import __version__
from sd_sampler.core import ImageGenerator
from sd_sampler.errors import GenerationError, SetupError

logger = logging.getLogger(__name__)

app = FastAPI(
    title="sd-sampler API",
    description="REST API for DDIM text-to-image sampling",
    version=__version__,
)

# Global generator instance (lazy-loaded)
_generator: Optional[ImageGenerator] = None
_generator_lock = threading.Lock()


def get_generator() -> ImageGenerator:
    """Get or create the global generator instance."""
    global _generator
    with _generator_lock:
        if _generator is None:
            logger.info("Initializing ImageGenerator...")
            _generator = ImageGenerator(auto_preview=False)
        return _generator


def set_generator(generator: Optional[ImageGenerator]) -> None:
    """Replace the global generator (None resets to lazy creation)."""
    global _generator
    _generator = generator


class GenerateRequest(BaseModel):
    """Request model for single image generation."""
    prompt: str = Field(..., min_length=1, description="Text description of the image to generate")
    negative_prompt: Optional[str] = Field(None, description="Text encoded alongside the prompt")
    width: Optional[int] = Field(None, description="Output width in pixels, multiple of 8 (default: 512)")
    height: Optional[int] = Field(None, description="Output height in pixels, multiple of 8 (default: 512)")
    num_inference_steps: Optional[int] = Field(None, description="Number of denoising steps, at most 50")
    seed: Optional[int] = Field(None, ge=0, description="Unsigned 32-bit seed, 0 = non-reproducible")
    return_base64: bool = Field(False, description="Return image as base64 in addition to the file path")


class GenerateResponse(BaseModel):
    """Response model for image generation."""
    success: bool
    message: str
    image_path: Optional[str] = None
    image_base64: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    seed: Optional[int] = None


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str
    model_loaded: bool
    resources_dir: str


@app.get("/", response_model=dict)
async def root():
    """Root endpoint with API information."""
    return {
        "name": "sd-sampler API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health", response_model=HealthResponse)
async def health():
    """Health check endpoint; does not trigger model loading."""
    gen = get_generator()
    return HealthResponse(
        status="healthy",
        model_loaded=gen.is_loaded,
        resources_dir=str(gen.config.resources_dir),
    )


@app.post("/generate", response_model=GenerateResponse)
def generate(request: GenerateRequest):
    """
    Generate a single image from a text prompt.

    Example:
        POST /generate
        {
            "prompt": "a photo of a cat",
            "num_inference_steps": 20,
            "seed": 42
        }
    """
    gen = get_generator()
    logger.info(f"Generating image: {request.prompt[:50]}...")

    try:
        image, saved_path = gen.generate_with_path(
            prompt=request.prompt,
            negative_prompt=request.negative_prompt,
            width=request.width,
            height=request.height,
            num_inference_steps=request.num_inference_steps,
            seed=request.seed,
            auto_save=True,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except SetupError as e:
        logger.error(f"Pipeline setup failed: {e}")
        raise HTTPException(status_code=503, detail=f"Setup failure: {e}")
    except GenerationError as e:
        logger.error(f"Generation failed: {e}")
        raise HTTPException(status_code=500, detail=f"Generation failure: {e}")

    response_data = {
        "success": True,
        "message": "Image generated successfully",
        "image_path": str(saved_path) if saved_path else None,
        "width": image.size[0],
        "height": image.size[1],
        "seed": request.seed,
    }

    if request.return_base64:
        buffer = BytesIO()
        image.save(buffer, format="PNG")
        response_data["image_base64"] = base64.b64encode(buffer.getvalue()).decode()

    return GenerateResponse(**response_data)


@app.post("/unload")
def unload_models():
    """
    Unload the inference engines to free device memory.

    Runs in the threadpool and waits for a running generation to finish.
    """
    global _generator
    if _generator is not None and _generator.is_loaded:
        _generator.unload_models()
        return {"success": True, "message": "Models unloaded successfully"}
    return {"success": True, "message": "No models were loaded"}


def run_server(
    host: str = "0.0.0.0",
    port: int = 8000,
    reload: bool = False,
    log_level: str = "info",
):
    """
    Run the FastAPI server.

    Args:
        host: Host to bind to
        port: Port to listen on
        reload: Enable auto-reload for development
        log_level: uvicorn log level
    """
    import uvicorn

    logger.info(f"Starting sd-sampler API server on {host}:{port}")

    uvicorn.run(
        "sd_sampler.server:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )
