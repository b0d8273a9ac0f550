import argparse
import yaml

import numpy as np

import torch
from torch.utils.data import DataLoader, TensorDataset

import pytorch_lightning as pl
from pytorch_lightning.callbacks import EarlyStopping
from pytorch_lightning.loggers import WandbLogger
from pytorch_lightning.utilities import rank_zero_only

from data.data_utils import split_dataset, standardize_images
from data.synthetic_images import SyntheticImagePairDataset

from invnet.models.factory import InvertibleNetworkFactory
from invnet.models.learner import InvertibleNetworkLearner
from invnet.models.config_constants import *

parser = argparse.ArgumentParser("Trains invertible networks on image pairs.")
parser.add_argument("--data_random_seed", type=int, default=2547)
parser.add_argument("--n_samples", type=int, default=2000)
parser.add_argument("--split_ratio", type=eval, default=[0.6, 0.2, 0.2])

parser.add_argument("--batch_size", type=int, default=64)
parser.add_argument("--max_epochs", type=int, default=50)
parser.add_argument("--lr", type=float, default=1e-3)
parser.add_argument("--patience", type=int, default=10)
parser.add_argument("--scheduler", type=str, default="fixed")

parser.add_argument("--model_config", type=str, required=True)
parser.add_argument("--config_path", type=str, default="./model_config.yaml")
parser.add_argument("--model_seed", type=int, default=2541)

parser.add_argument("--wandb_name", type=str)


def load_data(
    data_config: dict,
    n_channels: int,
    n_samples: int,
    split_ratio: tuple[float, float, float],
    random_seed: int
) -> tuple[np.ndarray, ...]:
    """Generates paired image samples, standardizes and splits them.

    Args:
        data_config: Arguments of the synthetic image generator.
        n_channels: Number of image channels.
        n_samples: Number of pairs to generate.
        split_ratio: Ratio of train / val / test splits.
        random_seed: Random seed used to draw samples.

    Returns:
        Train / val / test arrays, each of shape (n, 2, C, H, W) holding X
        and Y along the second dimension.
    """
    generator = SyntheticImagePairDataset(n_channels, **data_config,
                                          random_seed=random_seed)
    x, y = generator.generate_samples(n_samples, random_seed)
    pairs = np.stack([standardize_images(x), standardize_images(y)], axis=1)
    return split_dataset(pairs.astype(np.float32), split_ratio, random_seed)


def make_dataloader(
    data: np.ndarray,
    network_type: str,
    batch_size: int,
    shuffle: bool
) -> DataLoader:
    """Wraps paired data so batches match the network's inputs.

    The conditional HINT network takes (X, Y) while the hyperbolic network
    only models X.
    """
    data = torch.from_numpy(data)
    if network_type == "conditional_hint":
        dataset = TensorDataset(data[:, 0], data[:, 1])
    else:
        dataset = TensorDataset(data[:, 0])
    return DataLoader(dataset, batch_size=batch_size, shuffle=shuffle)


def main():
    args = parser.parse_args()

    with open(args.config_path, "r") as f:
        config = yaml.safe_load(f)
        model_config = config[args.model_config]
        data_config = config["data"]

    if model_config[NETWORK_TYPE] == "hyperbolic":
        model_config[IN_SHAPE] = data_config["image_shape"]

    train, val, _ = load_data(data_config, model_config[N_IN],
                              args.n_samples, args.split_ratio,
                              args.data_random_seed)

    network_type = model_config[NETWORK_TYPE]
    train_dl = make_dataloader(train, network_type, args.batch_size, True)
    val_dl = make_dataloader(val, network_type, args.batch_size, False)

    # Fixed seed prior to initialization. Useful for generating CIs.
    np.random.seed(args.model_seed)
    torch.random.manual_seed(args.model_seed)

    network = InvertibleNetworkFactory(model_config).build_network()
    learner = InvertibleNetworkLearner(network, args.lr, args.scheduler)

    train_args = {
        "max_epochs": args.max_epochs,
        "callbacks": [],
        "enable_checkpointing": False,
        "deterministic": True
    }

    if args.wandb_name:
        all_config = vars(args)
        all_config.update(model_config)

        wandb_logger = WandbLogger(project=args.wandb_name)

        if rank_zero_only.rank == 0:
            wandb_logger.experiment.config.update(all_config)

        train_args["logger"] = wandb_logger

    if args.patience != -1:
        early_stopping = EarlyStopping("val_loss", patience=args.patience)
        train_args["callbacks"].append(early_stopping)

    trainer = pl.Trainer(**train_args)

    trainer.fit(model=learner,
                train_dataloaders=train_dl,
                val_dataloaders=val_dl)


if __name__ == "__main__":
    main()
