import argparse
import yaml

import numpy as np

import torch
import torch.optim as optim

import wandb

from experiments.run_experiment import load_data, make_dataloader
from experiments.train_utils import train_loop, check_wandb_run, \
    persist_wandb

from invnet.models.factory import InvertibleNetworkFactory
from invnet.models.config_constants import *


parser = argparse.ArgumentParser(
    "Trains invertible networks on image pairs with a plain training loop."
)
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
parser.add_argument("--persist", type=eval, default=False)
parser.add_argument("--wandb_check", type=eval, default=False)


def main():
    """Trains a network with the recomputing backward, outside Lightning."""
    args = parser.parse_args()

    with open(args.config_path, "r") as f:
        config = yaml.safe_load(f)
        model_config = config[args.model_config]
        data_config = config["data"]

    network_type = model_config[NETWORK_TYPE]
    if network_type == "hyperbolic":
        model_config[IN_SHAPE] = data_config["image_shape"]

    train, val, _ = load_data(data_config, model_config[N_IN],
                              args.n_samples, args.split_ratio,
                              args.data_random_seed)
    train_dl = make_dataloader(train, network_type, args.batch_size, True)
    val_dl = make_dataloader(val, network_type, args.batch_size, False)

    # Fixed seed prior to initialization. Useful for generating CIs.
    np.random.seed(args.model_seed)
    torch.random.manual_seed(args.model_seed)

    network = InvertibleNetworkFactory(model_config).build_network()
    optimizer = optim.Adam(network.parameters(), args.lr)

    if args.scheduler == "fixed":
        scheduler = None
    elif args.scheduler == "plateau":
        scheduler = optim.lr_scheduler.ReduceLROnPlateau(optimizer, patience=5)
    else:
        raise ValueError(f"Unknown scheduler {args.scheduler}.")

    train_args = {
        "max_epoch": args.max_epochs,
        "patience": args.patience,
        "use_wandb": bool(args.wandb_name),
    }

    run = None
    if args.wandb_name:
        all_config = vars(args)
        all_config.update(model_config)

        if args.wandb_check and check_wandb_run(all_config, args.wandb_name):
            print("Run with same config is running or complete.")
            return

        run = wandb.init(project=args.wandb_name, config=all_config)

    best_model_state = train_loop(network, optimizer, scheduler,
                                  train_dl, val_dl, train_args)

    if run is not None:
        if args.persist:
            persist_wandb(run, best_model_state, network_type)
        run.finish()


if __name__ == "__main__":
    main()
