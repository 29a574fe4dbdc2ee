"""
Analytics: dashboard period comparison, per-affiliation and per-user rollups.
"""
