"""Frame extraction, vision analysis, embeddings and the analysis worker pool."""
