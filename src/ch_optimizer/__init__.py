"""
ch-optimizer: keeps ClickHouse GraphiteMergeTree partitions merged on time.

A daemon that finds partitions whose parts were not merged within their
retention rollup deadline and issues OPTIMIZE commands for them.
"""

__version__ = "0.1.0"
