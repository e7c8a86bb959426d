"""
Type Contracts for FloWorx

Protocol-based contracts between the decision engine and the systems it
drives (mail providers, LLM, tenant config). Protocols only, no logic.
"""

from floworx.contracts.collaborators import LabelProvider, LLMCompletion, TenantConfigStore

__all__ = ["LabelProvider", "LLMCompletion", "TenantConfigStore"]
