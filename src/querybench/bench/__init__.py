"""Benchmarking subsystem for querybench.

Turns a benchmark configuration into runs of external load generators
(autocannon, k6, wrk2) and normalizes their per-request timings into
one statistical report per benchmark and tool.
"""
