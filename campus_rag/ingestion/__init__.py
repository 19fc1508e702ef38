"""Ingestion package for offline/ETL pipelines.

Contains the sitemap crawler, the page scraper and the incremental ingestor
that populate the page table and the vector store. See pipeline.py for the
cron entry point.
"""
