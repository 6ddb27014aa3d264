"""Scrape-side glue: prometheus_client adapter and HTTP server."""
