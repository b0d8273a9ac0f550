from .conditional_layer_hint import ConditionalLayerHINT
from .conditional_layer_slim import ConditionalLayerSLIM, SLIM_TYPES

__all__ = [
    "ConditionalLayerHINT",
    "ConditionalLayerSLIM",
    "SLIM_TYPES",
]
