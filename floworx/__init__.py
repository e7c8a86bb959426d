"""FloWorx email classification, routing and label reconciliation engine"""

from __future__ import annotations

__version__ = "0.1.0"


def __getattr__(name: str):
    """
    Lazy imports so routing/reconciliation callers don't pay for the LLM SDK import.
    """
    if name == "route":
        from floworx.routing.router import route

        return route
    if name == "reconcile":
        from floworx.labels.reconciler import reconcile

        return reconcile
    if name == "classify":
        from floworx.classification.classifier import classify

        return classify
    if name == "record_correction":
        from floworx.concepts.feedback import record_correction

        return record_correction
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = ["classify", "reconcile", "record_correction", "route"]
