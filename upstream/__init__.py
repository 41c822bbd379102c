"""
Upstream access for the Grow a Garden stock API.
"""
