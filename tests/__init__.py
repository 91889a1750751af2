"""
Test suite for the racing DQN trainer.

This package contains tests for:
- RNG determinism and seed normalisation
- Car physics bounds and the fixed action table
- Track projection and progress unwrapping
- Environment dynamics (reset/step shapes, sensors, reward, laps)
- Replay buffer ring behaviour
- Q-network forward/backward pass against hand-derived gradients
- Agent exploration, training schedule and snapshots
- Trainer scheduling, persistence and metrics output
"""
