#!/usr/bin/env python3
"""CLI entry point for headless racing DQN training."""

import argparse
import logging
import os
import sys

# Add parent directory to path for imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rl_racer.config import config
from rl_racer.training import Trainer


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description='Racing DQN Training')
    parser.add_argument('--config', type=str, default=None,
                        help='Path to configuration file (default: config/default.yaml)')
    parser.add_argument('--episodes', type=int, default=None,
                        help='Maximum number of episodes to run (default: infinite)')
    parser.add_argument('--seed', type=str, default=None,
                        help='Seed for the environment and agent RNG streams')
    parser.add_argument('--load-racer', type=str, default=None,
                        help="Saved racer to deploy (filename or 'best')")
    parser.add_argument('--list-racers', action='store_true',
                        help='List all saved racers')
    parser.add_argument('--save-best', action='store_true',
                        help='Save a racer whenever the best episode return improves')
    parser.add_argument('--verbose', action='store_true',
                        help='Also log training progress to the console')

    args = parser.parse_args()

    if args.config:
        config_path = args.config
    else:
        current_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        config_path = os.path.join(current_dir, 'config', 'default.yaml')

    print(f"Loading configuration from: {config_path}")
    print(f"Max episodes: {args.episodes}")

    trainer = Trainer(config_path=config_path, seed=args.seed)

    if args.verbose:
        logging.getLogger('rl_training').addHandler(logging.StreamHandler(sys.stdout))

    if args.list_racers:
        racers = trainer.persistence.list_racers()
        print("Saved racers:")
        for racer in racers:
            print(f"  {racer['filename']}  name={racer['name']}  "
                  f"episodes={racer['episodes']}  best_return={racer['best_return']}")
        return

    if args.load_racer:
        print(f"Deploying racer: {args.load_racer}")
        if not trainer.load_racer(args.load_racer):
            print("Failed to load racer, starting fresh")

    hyperparams = trainer.hyperparams
    print("\nConfiguration Summary:")
    print(f"  Seed: {trainer.seed}")
    print(f"  Observation size: {trainer.env.observation_size}")
    print(f"  Learning rate: {hyperparams['learning_rate']}")
    print(f"  Batch size: {hyperparams['batch_size']}")
    print(f"  Replay buffer size: {hyperparams['replay_buffer_size']}")
    print(f"  Target update period: {hyperparams['target_update_period']}")
    print(f"  Initial epsilon: {hyperparams['epsilon_start']}")
    print(f"  Model save path: {config.get('model.save_path', 'models/')}")
    print("\nStarting training...")

    try:
        trainer.run(max_episodes=args.episodes, save_best=args.save_best)
    except KeyboardInterrupt:
        print("\nTraining interrupted by user")
    finally:
        stats = trainer.get_training_stats()
        print(f"Training completed. Episodes: {stats['episode']}, "
              f"updates: {stats['training_steps']}, best return: {stats['best_return']}")

        filename = trainer.save_racer("final")
        print(f"Final racer saved as: {filename}")


if __name__ == '__main__':
    main()
