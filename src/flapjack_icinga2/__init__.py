"""
flapjack-icinga2 - Icinga 2 event stream to Flapjack bridge.

This package follows the Icinga 2 API event stream, enriches check results
with object tags and queues them as Flapjack events in Redis.
"""

__version__ = "0.1.0"
__author__ = "flapjack-icinga2 contributors"
