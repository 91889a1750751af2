import os
import json
import math
import pickle
import time
import logging
from typing import Dict, Any, List, Optional

logger = logging.getLogger('rl_training')


class PersistenceManager:
    """Saved-racer storage: one pickle per racer plus a JSON registry."""

    def __init__(self, model_dir="models", max_saved: Optional[int] = 4):
        self.model_dir = model_dir
        self.max_saved = max_saved
        self.registry_path = os.path.join(model_dir, "registry.json")
        os.makedirs(model_dir, exist_ok=True)
        self._ensure_registry()

    def _ensure_registry(self):
        if not os.path.exists(self.registry_path):
            self._save_registry({})

    def _load_registry(self) -> Dict[str, Any]:
        if not os.path.exists(self.registry_path):
            return {}
        with open(self.registry_path, 'r') as f:
            try:
                registry = json.load(f)
            except json.JSONDecodeError:
                logger.warning(f"Registry {self.registry_path} is corrupt, treating it as empty")
                return {}
        return registry if isinstance(registry, dict) else {}

    def _save_registry(self, registry: Dict[str, Any]):
        with open(self.registry_path, 'w') as f:
            json.dump(registry, f, indent=4)

    def save_racer(self, payload: Dict[str, Any]) -> str:
        """Write a racer payload and register it.

        ``payload`` holds ``name``, ``hyperparams``, ``agent_snapshot`` and
        ``metrics``. Returns the filename used as the racer's identifier.
        """
        timestamp = time.time()
        metrics = payload.get('metrics', {})
        episode = metrics.get('episodes', 0)
        stamp = int(timestamp * 1000)
        filename = f"racer_ep{episode}_{stamp}.pkl"
        while os.path.exists(os.path.join(self.model_dir, filename)):
            stamp += 1
            filename = f"racer_ep{episode}_{stamp}.pkl"
        filepath = os.path.join(self.model_dir, filename)

        with open(filepath, 'wb') as f:
            pickle.dump(payload, f)

        registry = self._load_registry()
        registry[filename] = {
            'filename': filename,
            'name': payload.get('name', filename),
            'timestamp': timestamp,
            'episodes': episode,
            'best_return': metrics.get('best_return'),
            'best_lap_count': metrics.get('best_lap_count', 0),
            'training_steps': metrics.get('training_steps', 0),
            'created_at': time.ctime(timestamp)
        }
        self._save_registry(registry)
        logger.info(f"Saved racer '{registry[filename]['name']}' to {filepath}")

        self._prune(registry)
        return filename

    def _prune(self, registry: Dict[str, Any]):
        """Keep only the ``max_saved`` most recent racers."""
        if not self.max_saved or len(registry) <= self.max_saved:
            return
        ordered = sorted(registry.values(), key=lambda x: x.get('timestamp', 0))
        for entry in ordered[:len(ordered) - self.max_saved]:
            self.delete_racer(entry['filename'])

    def _resolve(self, identifier: str, registry: Dict[str, Any]) -> Optional[str]:
        if identifier == 'best':
            ranked = [entry for entry in registry.values()
                      if isinstance(entry.get('best_return'), (int, float))
                      and math.isfinite(entry['best_return'])]
            if not ranked:
                return None
            return max(ranked, key=lambda x: x['best_return'])['filename']
        if identifier in registry:
            return identifier
        # Direct filename that never made it into the registry
        if os.path.exists(os.path.join(self.model_dir, identifier)):
            return identifier
        return None

    def load_racer(self, identifier: str) -> Optional[Dict[str, Any]]:
        """Load a racer by filename, or the highest best-return racer for ``'best'``."""
        target_filename = self._resolve(identifier, self._load_registry())
        if not target_filename:
            return None

        filepath = os.path.join(self.model_dir, target_filename)
        if not os.path.exists(filepath):
            return None
        try:
            with open(filepath, 'rb') as f:
                return pickle.load(f)
        except Exception as e:
            logger.warning(f"Failed to load racer {target_filename}: {e}")
            return None

    def delete_racer(self, identifier: str) -> bool:
        registry = self._load_registry()
        removed = registry.pop(identifier, None) is not None

        filepath = os.path.join(self.model_dir, identifier)
        if os.path.exists(filepath):
            os.remove(filepath)
            removed = True

        self._save_registry(registry)
        return removed

    def list_racers(self) -> List[Dict[str, Any]]:
        """All racers, newest first; files missing from the registry get basic info."""
        registry = self._load_registry()
        files = [f for f in os.listdir(self.model_dir) if f.endswith('.pkl')]
        racers = []
        for f in files:
            if f in registry:
                racers.append(registry[f])
            else:
                filepath = os.path.join(self.model_dir, f)
                timestamp = os.path.getmtime(filepath)
                racers.append({
                    'filename': f,
                    'name': f,
                    'timestamp': timestamp,
                    'episodes': -1,  # Unknown
                    'best_return': None,
                    'best_lap_count': 0,
                    'training_steps': 0,
                    'created_at': time.ctime(timestamp)
                })

        racers.sort(key=lambda x: x['timestamp'], reverse=True)
        return racers
