"""Folio — portfolio backend with realtime dashboard refresh.

Projects, certificates, skills, career timeline, contacts and newsletter
subscribers, plus the pipeline that pushes every data change to connected
dashboards so they refresh on their own.
"""

__version__ = "0.1.0"
