# src/hatym/engine/__init__.py
"""
Server-side background work for hatym.

- sweeper: periodic lease expiry / reclaim
"""

from .sweeper import ExpirySweeper, SweeperConfig, run_sweep, sweep_active_sessions

__all__ = ["ExpirySweeper", "SweeperConfig", "run_sweep", "sweep_active_sessions"]
