"""
Pipeline orchestration for b64pipe.
"""

from b64pipe.pipeline.orchestrator import DecodePipeline

__all__ = ["DecodePipeline"]
