import logging

import torch

logger = logging.getLogger(__name__)


def describe_devices():
    """Capability summary of every visible CUDA device; empty without CUDA."""
    if not torch.cuda.is_available():
        return []
    devices = []
    for index in range(torch.cuda.device_count()):
        props = torch.cuda.get_device_properties(index)
        devices.append(
            {
                "index": index,
                "name": props.name,
                "compute_capability": f"{props.major}.{props.minor}",
                "multiprocessors": props.multi_processor_count,
                "total_memory_mb": props.total_memory // (1024 * 1024),
            }
        )
    return devices


def report_devices():
    devices = describe_devices()
    if not devices:
        logger.info("no CUDA device visible")
    for d in devices:
        logger.info(
            "device %d: %s | sm %s | %d multiprocessors | %d MiB",
            d["index"],
            d["name"],
            d["compute_capability"],
            d["multiprocessors"],
            d["total_memory_mb"],
        )
    return devices
