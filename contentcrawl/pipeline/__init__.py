"""Crawl pipeline: scheduling, processing and orchestration."""
