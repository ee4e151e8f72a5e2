"""SiteBeacon Collector - visit and event analytics server."""
