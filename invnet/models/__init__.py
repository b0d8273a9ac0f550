import torch

from typing import Tuple

TTuple = Tuple[torch.Tensor, torch.Tensor]
TTriple = Tuple[torch.Tensor, torch.Tensor, torch.Tensor]
TQuad = Tuple[torch.Tensor, torch.Tensor, torch.Tensor, torch.Tensor]
