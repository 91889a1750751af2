import logging
import json
import csv
from pathlib import Path
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Dict, Any, List, Optional


class MetricsCollector:
    """Structured monitoring layer for racing DQN training metrics."""

    def __init__(self, log_dir: str = 'logs', max_history: int = 1000):
        """Initialize metrics collector with rotating file handlers.

        Args:
            log_dir: Directory to store log files
            max_history: Number of episodes kept in memory
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.logger = logging.getLogger('rl_training')
        self.logger.setLevel(logging.INFO)

        # Remove existing handlers to avoid duplicates
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        # File handler with rotation (10 MB max, keep 5 backups)
        file_handler = RotatingFileHandler(
            self.log_dir / 'training.log',
            maxBytes=10 * 1024 * 1024,
            backupCount=5
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        self.logger.addHandler(file_handler)

        # JSONL file for structured metrics
        self.jsonl_file = self.log_dir / 'metrics.jsonl'

        # CSV file for time-series analysis
        self.csv_file = self.log_dir / 'metrics.csv'
        self.csv_headers = None

        self.episode_metrics: List[Dict[str, Any]] = []
        self.max_history = max_history

        self.startup_time = datetime.now()

    def close(self) -> None:
        """Detach and close this collector's log handlers."""
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

    def log_episode(self, episode_data: Dict[str, Any]) -> None:
        """Log metrics for a completed episode.

        Args:
            episode_data: Dictionary containing episode metrics
                Expected keys: episode, episode_return, steps, epsilon, loss,
                training_steps, replay_size, laps and optionally other metrics
        """
        episode_data = dict(episode_data)
        episode_data['timestamp'] = datetime.now().isoformat()
        episode_data['uptime_seconds'] = (
            datetime.now() - self.startup_time
        ).total_seconds()

        self.episode_metrics.append(episode_data.copy())
        if len(self.episode_metrics) > self.max_history:
            self.episode_metrics.pop(0)

        loss = episode_data.get('loss')
        self.logger.info(
            f"Episode {episode_data.get('episode', 'N/A')}: "
            f"Return={episode_data.get('episode_return', 0.0):.2f}, "
            f"Loss={'n/a' if loss is None else f'{loss:.4f}'}, "
            f"Steps={episode_data.get('steps', 0)}, "
            f"Laps={episode_data.get('laps', 0)}, "
            f"Epsilon={episode_data.get('epsilon', 0.0):.4f}"
        )

        self._write_jsonl(episode_data)
        self._write_csv(episode_data)

    def _write_jsonl(self, data: Dict[str, Any]) -> None:
        try:
            with open(self.jsonl_file, 'a') as f:
                json.dump(data, f)
                f.write('\n')
        except IOError as e:
            self.logger.error(f"Failed to write JSONL: {e}")

    def _write_csv(self, data: Dict[str, Any]) -> None:
        """Append a row; the header is fixed by the first row written."""
        try:
            if self.csv_headers is None:
                self.csv_headers = sorted(data.keys())

            file_exists = self.csv_file.exists()

            with open(self.csv_file, 'a', newline='') as f:
                writer = csv.DictWriter(f, fieldnames=self.csv_headers)
                if not file_exists:
                    writer.writeheader()
                writer.writerow({k: data.get(k, '') for k in self.csv_headers})
        except IOError as e:
            self.logger.error(f"Failed to write CSV: {e}")

    def log_training_step(self, step_data: Dict[str, Any]) -> None:
        """Log a training step (more frequent than episode logging)."""
        self.logger.debug(f"Training step: {step_data}")

    def get_metrics_history(self) -> List[Dict[str, Any]]:
        return self.episode_metrics.copy()

    def get_latest_metrics(self) -> Optional[Dict[str, Any]]:
        if self.episode_metrics:
            return self.episode_metrics[-1].copy()
        return None

    def get_aggregated_stats(self) -> Dict[str, Any]:
        """Calculate aggregated statistics from recent history.

        Returns:
            Dictionary of aggregated metrics
        """
        if not self.episode_metrics:
            return {}

        returns = [m.get('episode_return', 0.0) for m in self.episode_metrics]
        losses = [m['loss'] for m in self.episode_metrics if m.get('loss') is not None]
        epsilons = [m.get('epsilon', 0.0) for m in self.episode_metrics]
        steps = [m.get('steps', 0) for m in self.episode_metrics]
        laps = [m.get('laps', 0) for m in self.episode_metrics]

        total_episodes = len(self.episode_metrics)

        return {
            'total_episodes': total_episodes,
            'avg_return': sum(returns) / total_episodes,
            'max_return': max(returns),
            'min_return': min(returns),
            'avg_loss': sum(losses) / len(losses) if losses else None,
            'avg_epsilon': sum(epsilons) / total_episodes,
            'total_steps': sum(steps),
            'total_laps': sum(laps),
            'uptime_seconds': (
                datetime.now() - self.startup_time
            ).total_seconds(),
        }

    def load_metrics_from_disk(self) -> None:
        """Load previously logged metrics from JSONL file."""
        if not self.jsonl_file.exists():
            return

        try:
            with open(self.jsonl_file, 'r') as f:
                for line in f:
                    if line.strip():
                        self.episode_metrics.append(json.loads(line))

            if len(self.episode_metrics) > self.max_history:
                self.episode_metrics = self.episode_metrics[-self.max_history:]

            self.logger.info(
                f"Loaded {len(self.episode_metrics)} metrics from disk"
            )
        except (IOError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to load metrics from disk: {e}")
