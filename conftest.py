import pytest
import torch


@pytest.fixture(autouse=True)
def double_precision():
    """Run each test in float64 with a fixed seed."""
    default = torch.get_default_dtype()
    torch.set_default_dtype(torch.float64)
    torch.manual_seed(2547)
    yield
    torch.set_default_dtype(default)


@pytest.fixture
def param_grads():
    """Return a function that snapshots the parameter gradients of a module."""
    def _grads(module: torch.nn.Module) -> list[torch.Tensor]:
        return [
            torch.zeros_like(p) if p.grad is None else p.grad.clone()
            for p in module.parameters()
        ]
    return _grads
