"""Command orchestration: routing, execution paths, and the engine that chains them."""
