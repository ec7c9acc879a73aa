"""End-to-end pipelines: ingest, engineer features, train, predict, persist."""
