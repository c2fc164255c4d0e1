"""
End-to-end regionalization pipeline and its run parameters.
"""

from .config import DEFAULT_CONFIG, PipelineConfig, resolve_config
from .runner import PipelineResult, run_pipeline

__all__ = ['DEFAULT_CONFIG', 'PipelineConfig', 'resolve_config', 'PipelineResult', 'run_pipeline']
