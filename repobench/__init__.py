"""
Benchmark harness for repository storage services.

Drives a lakeFS-style HTTP API with a bounded pool of worker threads that upload
and then read back a configurable number of objects, retrying transient
failures, and prints the service's operation latency metrics after the run.
"""

__version__ = "0.1.0"
