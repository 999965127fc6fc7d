import argparse
import logging
import os

import numpy as np
import torch
from tqdm import tqdm

from sdr import (
    ConditioningExperiment,
    CoupledAgent,
    CoupledAgentConfig,
    PredictionMonitor,
    print_config,
)
from sdr.const import DEVICE


def run_block(agent, experiment, steps, progress):
    """One conditioning block of `steps` steps with a fresh prediction monitor."""
    monitor = PredictionMonitor(threshold=0.5, window=300)
    experiment.reset()
    state = experiment.state
    agent.new_episode(state)

    history = {"stimulus": [], "reward": [], "prediction": [], "dopamine": []}
    for _ in range(steps):
        result = agent.request_action(state)
        monitor.update(result)
        history["stimulus"].append(state.stimulus)
        history["reward"].append(state.reward)
        history["prediction"].append(float(result.cortex.output[0]))
        history["dopamine"].append(result.dopamine)

        state = experiment.advance()
        agent.return_reward(state, state.reward)
        progress.update(1)
    agent.end_episode(state)

    return monitor, {k: np.asarray(v) for k, v in history.items()}


def plot_block(history, path):
    import matplotlib.pyplot as plt

    fig, axes = plt.subplots(3, 1, figsize=(15, 8), sharex=True)
    axes[0].plot(history["stimulus"], label="CS")
    axes[0].plot(history["reward"], label="US")
    axes[0].legend()
    axes[1].plot(history["prediction"], label="Cortex prediction")
    axes[1].legend()
    axes[2].plot(history["dopamine"], label="Dopamine (TD error)")
    axes[2].legend()
    axes[2].set_xlabel("Step (200 ms)")
    plt.savefig(path)
    plt.close(fig)


def main():
    parser = argparse.ArgumentParser(
        description="Train cortex/basal-ganglia agents on trace conditioning."
    )
    parser.add_argument("--networks", type=int, default=1)
    parser.add_argument("--blocks", type=int, default=2)
    parser.add_argument("--block-steps", type=int, default=1200)
    parser.add_argument("--lr", type=float, default=0.5)
    parser.add_argument("--critic-lr", type=float, default=0.1)
    parser.add_argument("--num-blocks", type=int, default=2)
    parser.add_argument("--cells-per-block", type=int, default=2)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument(
        "--plot-dir",
        type=str,
        default=None,
        help="Save a CS/US/prediction/dopamine plot of every block here.",
    )
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    if args.plot_dir is not None:
        os.makedirs(args.plot_dir, exist_ok=True)

    learned = 0
    for n in range(args.networks):
        cfg = CoupledAgentConfig(
            num_blocks=args.num_blocks,
            cells_per_block=args.cells_per_block,
            predictor_lr=args.lr,
            critic_lr=args.critic_lr,
            seed=args.seed + 2 * n,
        )
        if n == 0:
            print_config(cfg)
        agent = CoupledAgent(cfg)
        experiment = ConditioningExperiment(
            fixed_delay_ms=1000.0,
            generator=torch.Generator(device=DEVICE).manual_seed(args.seed + n),
        )

        print(f"Network {n + 1}/{args.networks}")
        success = False
        with tqdm(total=args.blocks * args.block_steps) as progress:
            for block in range(args.blocks):
                monitor, history = run_block(agent, experiment, args.block_steps, progress)
                if monitor.satisfied:
                    success = True
                    tqdm.write(
                        f"Learning succeeded at block {block} step {monitor.first_correct_step}"
                    )
                if args.plot_dir is not None:
                    plot_block(
                        history,
                        os.path.join(args.plot_dir, f"network{n}_block{block}.png"),
                    )
        learned += int(success)

    print(f"\nLearned: {learned}/{args.networks}")
    print(f"Final state after last block: {agent.cortex_state.tolist()}")


if __name__ == "__main__":
    main()
