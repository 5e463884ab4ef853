"""Individual network and registry probes.

Every probe takes the raw target URL, parses it on its own and returns a
result object from :mod:`hostwatch.report`. Faults are converted to the
category's ``error`` status instead of being raised.
"""
