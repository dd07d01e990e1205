"""Pure domain layer: value objects, stock arithmetic, metrics and workflow."""
