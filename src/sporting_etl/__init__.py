"""Rate-governed ingestion of basketball data into S3.

Upstream calls go through a multi-window rate limiter whose usage is kept in
S3; responses are flattened into date-partitioned CSV batches.
"""
