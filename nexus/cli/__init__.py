"""Terminal front end for Nexus."""
