"""
Trust Core

Trust-scoring and adaptive access-control engine. The engine facade is
trustcore.orchestrator.TrustOrchestrator.
"""

__version__ = "1.0.0"
