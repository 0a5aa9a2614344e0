"""
quietcrawl - Site crawler that waits for pages to settle.

Breadth-first frontier scheduling under page, depth and time budgets,
robots.txt and sitemap awareness, and a stabilization detector that
decides when a rendered page has gone quiet.

Licensed under MIT License
"""

__version__ = "1.0.0"
__author__ = "quietcrawl Team"
__status__ = "Development"
