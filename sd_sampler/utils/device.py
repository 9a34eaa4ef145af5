"""
Module: sd_sampler.utils.device
Purpose: Compute device selection for the torch inference engines
Dependencies: torch
"""

from typing import Dict, Any, List, Optional
import logging
import platform

import torch

logger = logging.getLogger(__name__)

DEVICE_PRIORITY = ("mps", "cuda", "cpu")


def _is_available(device: str) -> bool:
    if device == "mps":
        return torch.backends.mps.is_available() and torch.backends.mps.is_built()
    if device == "cuda":
        return torch.cuda.is_available()
    return device == "cpu"


def detect_device(prefer_device: Optional[str] = None) -> str:
    """
    Pick the compute device for model loading.

    A requested device is used when available; otherwise the first available
    of MPS (Apple Silicon), CUDA, CPU.

    Args:
        prefer_device: Optional device preference ("mps", "cuda", "cpu")

    Returns:
        Device string: "mps", "cuda", or "cpu"

    Example:
        >>> detect_device(prefer_device="cpu")
        'cpu'
    """
    if prefer_device:
        prefer_device = prefer_device.lower()
        if prefer_device not in DEVICE_PRIORITY:
            logger.warning(f"Unknown device '{prefer_device}', falling back to auto-detection")
        elif _is_available(prefer_device):
            logger.info(f"Using user-specified {prefer_device.upper()} device")
            return prefer_device
        else:
            logger.warning(f"{prefer_device.upper()} requested but not available, falling back to auto-detection")

    for device in DEVICE_PRIORITY:
        if _is_available(device):
            if device == "cuda":
                logger.info(f"Auto-detected CUDA device: {torch.cuda.get_device_name(0)}")
            elif device == "cpu":
                logger.info("No GPU detected, using CPU")
            else:
                logger.info("Auto-detected MPS (Apple Silicon) device")
            return device

    return "cpu"


def get_device(config_device: Optional[str] = None) -> torch.device:
    """Torch device object for `config_device` (None = auto-detect)."""
    return torch.device(detect_device(config_device))


def get_device_info() -> Dict[str, Any]:
    """
    Availability and specifications of the compute devices.

    Returns:
        Dictionary with keys current_device, mps_available, cuda_available,
        cpu_threads, and CUDA name/memory or platform details when relevant
    """
    info: Dict[str, Any] = {
        "current_device": detect_device(),
        "mps_available": _is_available("mps"),
        "cuda_available": _is_available("cuda"),
        "cpu_threads": torch.get_num_threads(),
    }

    if info["cuda_available"]:
        info["cuda_device_name"] = torch.cuda.get_device_name(0)
        info["total_memory_gb"] = torch.cuda.get_device_properties(0).total_memory / (1024**3)
    elif info["mps_available"]:
        info["platform"] = platform.platform()

    return info


def format_device_info(info: Optional[Dict[str, Any]] = None) -> List[str]:
    """Human-readable lines describing the devices, for the CLI."""
    info = info or get_device_info()

    lines = [
        f"Current Device: {info['current_device']}",
        f"MPS Available: {info['mps_available']}",
        f"CUDA Available: {info['cuda_available']}",
        f"CPU Threads: {info['cpu_threads']}",
    ]
    if "cuda_device_name" in info:
        lines.append(f"CUDA Device: {info['cuda_device_name']} ({info['total_memory_gb']:.1f} GB)")
    if "platform" in info:
        lines.append(f"Platform: {info['platform']}")
    return lines
