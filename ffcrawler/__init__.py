"""Crawler for fanfiction.net category listings.

Structure:
- request_queue.py: serialized, throttled HTTP requests with retries
- scraper.py: page and chapter traversal, versioning and incremental updates
- storage.py: JSON file tree with memoized directory creation
- parser.py: listing, pagination and chapter markup parsing
- export.py: aggregate export of a stored run
"""
