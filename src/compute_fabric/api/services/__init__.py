"""Service layer: job store, job runner and settlement."""
