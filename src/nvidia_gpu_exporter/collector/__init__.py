"""GPU telemetry collection: native source, metric registry and collector."""
