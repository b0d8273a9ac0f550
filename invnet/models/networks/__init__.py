from .network_conditional_hint import NetworkConditionalHINT
from .network_hyperbolic import NetworkHyperbolic, build_schedule

__all__ = [
    "NetworkConditionalHINT",
    "NetworkHyperbolic",
    "build_schedule",
]
