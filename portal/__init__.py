"""Flask entrypoint for the lecture file pipeline."""
