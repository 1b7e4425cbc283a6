"""
URL Utilities for GA4 property and Search Console site labels
"""
from urllib.parse import urlparse


def strip_site_prefix(site_url: str) -> str:
    """
    Human label for a Search Console site or GA4 website URL

    Handles:
    - URL-prefix properties: https://example.com, http://www.example.com/
    - Domain properties: sc-domain:example.com

    Returns:
        Label without scheme, sc-domain: marker or leading www.
        (e.g., 'example.com', 'blog.example.com/')
    """
    label = site_url
    for prefix in ('sc-domain:', 'https://', 'http://'):
        if label.startswith(prefix):
            label = label[len(prefix):]
            break

    if label.startswith('www.'):
        label = label[4:]

    return label


def short_path(page_url: str) -> str:
    """
    Path portion of a page URL from Search Console ('/' for a bare host)
    """
    parsed = urlparse(page_url)
    if not parsed.scheme and not parsed.netloc:
        return page_url
    return parsed.path or '/'

