"""
Services package for the flapjack-icinga2 bridge.

Contains:
- event_bridge: Icinga 2 event stream ingestion, enrichment and Flapjack dispatch
"""
