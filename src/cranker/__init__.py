"""
Epoch-gated crank service.

- scheduler: CrankScheduler, one crank cycle per epoch
- handler: process entry points (main, run_once, lambda_handler)
"""

__all__ = [
    "handler",
    "scheduler",
]
