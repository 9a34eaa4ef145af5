"""
Module: sd_sampler.utils
Purpose: Device selection helpers for the torch inference engines
"""

from sd_sampler.utils.device import detect_device, get_device, get_device_info

__all__ = ["detect_device", "get_device", "get_device_info"]
