"""Browser-facing building blocks of a run."""
