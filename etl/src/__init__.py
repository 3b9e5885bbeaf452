"""
Smlouvy Sync Pipeline
=====================

Synchronizes the Czech public contract registry (data.smlouvy.gov.cz) into a
PostgreSQL database. Monthly XML dumps are downloaded, their records are
reconciled against stored contracts, geocoded, and used to build the
supplier registry.

Main components:
- api_client: Async HTTP client with retry logic and rate limiting
- fetcher: Monthly dump download with a local file cache
- extractor: XML parsing and record location across dump layouts
- party_resolver: Authority/supplier role assignment
- transformer: Record to contract mapping
- geocoder: Address/authority geocoding with fallbacks
- processor: Contract reconciliation (idempotent upsert)
- suppliers / amendments: Derived entity extraction
- checkpoint: Resumable run progress
- orchestrator: Main synchronization flow
"""

__version__ = "0.1.0"
__author__ = "Smlouvy Sync Development Team"
