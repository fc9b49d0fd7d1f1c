"""
Integration pipeline: file event source → transformation engine → router.
"""

from .integration_pipeline import IngestError, IntegrationPipeline

__all__ = ["IntegrationPipeline", "IngestError"]
