"""
Masjid Display sync service.

Keeps a local cache of portal resources (content, prayer times, events...)
fresh for the display UI, and reports screen health via heartbeats.
"""

__version__ = "1.0.0"
