"""AI client, tool executors and turn orchestration."""
