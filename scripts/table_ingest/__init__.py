"""
Bulk loader for partitioned table stores.

Reads delimited flight files, groups rows by partition key and submits
them as bounded atomic batches with rate-limit aware retries.
"""

__version__ = "1.0.0"
