"""
Utils package - helpers shared by webhook handlers.

Contains the explicitly initialized Kubernetes client handle.
"""

from admission_server.utils.kubernetes import (
    KUBERNETES_CONTEXT_KEY,
    KubernetesContext,
    get_kubernetes_context,
)

__all__ = [
    "KUBERNETES_CONTEXT_KEY",
    "KubernetesContext",
    "get_kubernetes_context",
]
