"""Event detection and job orchestration engine."""
