"""
Ingestion Django application.

Fetches product listings from external catalogs (vendor REST APIs, CSV
dumps and scraped HTML), keeps verbatim raw captures, and merges every
source record into one canonical product per real-world item.
"""
