"""
Outbound services used by the monitor.
"""
