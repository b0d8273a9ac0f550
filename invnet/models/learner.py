import torch
import pytorch_lightning as pl
from torch.optim.lr_scheduler import ReduceLROnPlateau

from .invertible_layer import InvertibleNetwork
from ..utils import log_likelihood, grad_log_likelihood


def _as_inputs(batch) -> tuple[torch.Tensor, ...]:
    if isinstance(batch, torch.Tensor):
        return (batch,)
    return tuple(batch)


def compute_loss(
    latents: tuple[torch.Tensor, ...],
    logdet: torch.Tensor
) -> torch.Tensor:
    """Negative log-likelihood of latents under the standard normal.

    Args:
        latents: Network outputs.
        logdet: Log determinant of the network Jacobian.

    Returns:
        Scalar loss sum_i 0.5 * ||z_i||^2 / B - logdet.
    """
    return sum(-log_likelihood(z) for z in latents) - logdet


def train_step(
    network: InvertibleNetwork,
    batch
) -> torch.Tensor:
    """Run the forward pass and the memory-frugal backward pass.

    Parameter gradients are accumulated into .grad fields without storing
    the activations of the full network.

    Args:
        network: Network returning its log determinant from forward.
        batch: Input tensor, or tuple of input tensors.

    Returns:
        Loss of the batch.
    """
    with torch.no_grad():
        *latents, logdet = network(*_as_inputs(batch), logdet=True)

    grads = [-grad_log_likelihood(z) for z in latents]
    network.backward(*grads, *latents)
    return compute_loss(latents, logdet)


def eval_step(network: InvertibleNetwork, batch) -> torch.Tensor:
    """Compute the loss of a batch without touching gradients."""
    with torch.no_grad():
        *latents, logdet = network(*_as_inputs(batch), logdet=True)
    return compute_loss(latents, logdet)


class InvertibleNetworkLearner(pl.LightningModule):
    """Lightning wrapper training an invertible network by maximum likelihood.

    Uses manual optimization, since gradients are computed by the network's
    own backward pass rather than by autograd on the full graph.
    """

    def __init__(
        self,
        network: InvertibleNetwork,
        lr: float,
        scheduler: str = "fixed",
        patience: int = 5
    ):
        """Initialize InvertibleNetworkLearner.

        Args:
            network: Invertible network to train.
            lr: Learning rate of the Adam optimizer.
            scheduler: Either "fixed" or "plateau".
            patience: Patience of the plateau scheduler.
        """
        super().__init__()
        if scheduler not in ("fixed", "plateau"):
            raise ValueError(f"{scheduler} is not a valid scheduler!")

        self.network = network
        self.lr = lr
        self.scheduler = scheduler
        self.patience = patience
        self.automatic_optimization = False

    def forward(self, *inputs: torch.Tensor):
        return self.network(*inputs, logdet=True)

    def training_step(self, batch, batch_idx: int) -> torch.Tensor:
        opt = self.optimizers()
        opt.zero_grad()
        loss = train_step(self.network, batch)
        opt.step()

        self.log("train_loss", loss, prog_bar=True)
        return loss

    def validation_step(self, batch, batch_idx: int) -> torch.Tensor:
        loss = eval_step(self.network, batch)
        self.log("val_loss", loss, prog_bar=True)
        return loss

    def on_validation_epoch_end(self):
        sch = self.lr_schedulers()
        if sch is None or self.trainer.sanity_checking:
            return
        if not isinstance(sch, ReduceLROnPlateau):
            raise RuntimeError("Unexpected scheduler type.")
        sch.step(self.trainer.callback_metrics["val_loss"])

    def configure_optimizers(self):
        optimizer = torch.optim.Adam(self.network.parameters(), lr=self.lr)
        if self.scheduler == "fixed":
            return optimizer

        scheduler = ReduceLROnPlateau(optimizer, patience=self.patience)
        return {
            "optimizer": optimizer,
            "lr_scheduler": {"scheduler": scheduler, "monitor": "val_loss"},
        }
