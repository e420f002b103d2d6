"""Domain models and errors shared by collectors, processors and the pipeline."""
