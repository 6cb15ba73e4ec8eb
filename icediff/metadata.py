"""
Collect run metadata for the icediff run header.

Captures the host, hardware and the two compiler variants being compared so
that a console transcript on its own is enough to reproduce a finding.
"""

import os
import platform
import sys
from pathlib import Path

import psutil

from icediff.config import FuzzConfig
from icediff.execution import ExecutionManager


def get_hardware_info() -> dict:
    """Return CPU and memory figures for the host."""
    return {
        "cpu_count_logical": psutil.cpu_count(logical=True),
        "cpu_count_physical": psutil.cpu_count(logical=False),
        "total_ram_gb": round(psutil.virtual_memory().total / (1024**3), 2),
    }


def collect_run_metadata(config: FuzzConfig, execution_manager: ExecutionManager) -> dict:
    """
    Gather everything the run header prints.

    Args:
        config: The run configuration.
        execution_manager: Used to ask each variant for its version string.

    Returns:
        Dictionary with "environment", "hardware", "toolchains" and
        "configuration" sections.
    """
    execution = config.execution
    return {
        "environment": {
            "hostname": platform.node(),
            "os": platform.platform(),
            "pid": os.getpid(),
            "python_version": sys.version.replace("\n", " "),
            "working_dir": str(Path.cwd()),
        },
        "hardware": get_hardware_info(),
        "toolchains": {
            variant.name: {
                "selector": variant.selector,
                "version": execution_manager.describe_toolchain(variant),
            }
            for variant in execution.variants
        },
        "configuration": {
            "compiler": execution.compiler,
            "fixed_args": list(execution.fixed_args),
            "scratch_dir": str(execution.scratch_dir),
            "workers": config.workers,
            "seed": config.seed,
            "parallel_variants": execution.parallel_variants,
            "halt_on_candidate_crash": config.halt_on_candidate_crash,
        },
    }
