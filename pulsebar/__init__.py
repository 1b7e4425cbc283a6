"""
Pulsebar
Menubar companion that polls GA4 and Search Console and raises traffic alerts.
"""

__version__ = "0.4.0"
