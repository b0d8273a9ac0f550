import datetime
import pathlib
import os

import numpy as np

import torch
from torch.optim import Optimizer
from torch.optim.lr_scheduler import LRScheduler, ReduceLROnPlateau
from torch.utils.data import DataLoader

import wandb

from invnet.models.invertible_layer import InvertibleNetwork
from invnet.models.learner import train_step, eval_step


def train_loop(
    network: InvertibleNetwork,
    optimizer: Optimizer,
    scheduler: LRScheduler | ReduceLROnPlateau | None,
    train_dl: DataLoader,
    val_dl: DataLoader,
    train_args: dict
) -> dict | None:
    """Training loop for invertible networks, including validation step.

    Gradients are computed with the network's own backward pass, so no
    activations of the full network are kept between forward and backward.

    Args:
        network: Invertible network to train.
        optimizer: PyTorch optimizer.
        scheduler: PyTorch learning rate scheduler. Can be None.
        train_dl: Training set dataloader.
        val_dl: Validation set dataloader.
        train_args: Dictionary containing other training parameters.
    Returns:
        Dictionary of the best model state.
    """
    best_model_state = None
    best_val = None
    counter = 0

    for epoch in range(1, train_args["max_epoch"] + 1):
        train_losses = []
        for batch in train_dl:
            optimizer.zero_grad()
            loss = train_step(network, batch)
            optimizer.step()

            train_losses.append(loss.item())

        val_losses = [eval_step(network, batch).item() for batch in val_dl]

        epoch_train_loss = np.mean(train_losses)
        epoch_val_loss = np.mean(val_losses)

        if scheduler is not None:
            if isinstance(scheduler, ReduceLROnPlateau):
                scheduler.step(epoch_val_loss)
            elif isinstance(scheduler, LRScheduler):
                scheduler.step()
            else:
                raise RuntimeError("Unexpected scheduler type.")

        if train_args["use_wandb"]:
            wandb.log({"train_loss": epoch_train_loss,
                       "val_loss": epoch_val_loss})

        if best_val is None or epoch_val_loss < best_val:
            best_val = epoch_val_loss
            best_model_state = {
                k: v.detach().clone()
                for k, v in network.state_dict().items()
            }
            counter = 0
        else:
            counter += 1
            if counter > train_args["patience"]:
                return best_model_state

    return best_model_state


# Settings identifying a run in wandb
RUN_KEYS = ("model_config", "data_random_seed", "model_seed", "lr")


def check_wandb_run(config: dict, wandb_name: str) -> bool:
    """Check whether a run with the same settings exists in a wandb project.

    Runs are matched on RUN_KEYS.

    Args:
        config: Run configuration, containing at least RUN_KEYS.
        wandb_name: Name of the wandb project.

    Returns:
        True if a matching run is finished or still running.

    Raises:
        RuntimeError: If several runs match the settings.
    """
    filters = {f"config.{key}": config[key] for key in RUN_KEYS}
    runs = wandb.Api().runs(wandb_name, filters=filters)

    if len(runs) > 1:
        raise RuntimeError(f"{len(runs)} wandb runs match {filters}.")
    return len(runs) == 1 and runs[0].state in ("finished", "running")


def persist_wandb(
    wandb_run: wandb.apis.public.Run,
    model_state: dict,
    network_type: str = "invertible_network",
    temp_path: str = "./wandb"
):
    """Upload a network state dict as a wandb model artifact.

    The state is written to a temporary file under temp_path, which is
    removed once the artifact is logged.

    Args:
        wandb_run: Run to log the artifact to.
        model_state: State dict of the network.
        network_type: Artifact name, usually the network type.
        temp_path: Directory for the temporary weight file.
    """
    model_dir = pathlib.Path(temp_path)
    model_dir.mkdir(parents=True, exist_ok=True)

    stamp = datetime.datetime.now().strftime("%Y%m%d-%H%M%S")
    model_path = model_dir / f"{network_type}-{stamp}.pt"
    torch.save(model_state, model_path)

    try:
        artifact = wandb.Artifact(network_type, type="model")
        artifact.add_file(str(model_path))
        wandb_run.log_artifact(artifact)
    finally:
        os.remove(model_path)
