"""
SiteBeacon - visit and event analytics for small sites.

The collector (``sitebeacon.collector``) ingests beacons and serves
statistics; the tracker (``sitebeacon.tracker``) is an async SDK for
sending beacons from server-side code.
"""

__version__ = "0.3.0"
