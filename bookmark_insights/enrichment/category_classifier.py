"""Category classifier for bookmarks.

Assigns a coarse category (code, video, social, blog, ...) with a fixed
cascade where the first match wins:

1. Domain table - exact host or any subdomain of a listed domain
2. URL path substrings
3. Content keywords in title and description (whole words only)
4. The same keywords in the page's meta keywords

Pure and deterministic; no I/O.
"""

import re
from typing import Iterable, Optional
from urllib.parse import urlsplit

DOMAIN_CATEGORIES = {
    "github.com": "code",
    "gitlab.com": "code",
    "bitbucket.org": "code",
    "stackoverflow.com": "code",
    "stackexchange.com": "code",
    "youtube.com": "video",
    "vimeo.com": "video",
    "youtu.be": "video",
    "twitter.com": "social",
    "x.com": "social",
    "facebook.com": "social",
    "linkedin.com": "social",
    "instagram.com": "social",
    "reddit.com": "social",
    "medium.com": "blog",
    "dev.to": "blog",
    "hashnode.com": "blog",
    "substack.com": "blog",
    "wikipedia.org": "reference",
    "mdn.mozilla.org": "reference",
    "developer.mozilla.org": "reference",
    "w3schools.com": "reference",
    "amazon.com": "shopping",
    "ebay.com": "shopping",
    "etsy.com": "shopping",
}

# Checked in order; first substring hit wins
PATH_CATEGORIES = (
    ("/docs", "documentation"),
    ("/documentation", "documentation"),
    ("/api", "api"),
    ("/reference", "reference"),
    ("/tutorial", "tutorial"),
    ("/guide", "tutorial"),
    ("/blog", "blog"),
    ("/article", "blog"),
    ("/video", "video"),
    ("/watch", "video"),
)

KEYWORD_CATEGORIES = (
    ("tutorial", "tutorial"),
    ("guide", "tutorial"),
    ("how to", "tutorial"),
    ("documentation", "documentation"),
    ("docs", "documentation"),
    ("api", "api"),
    ("reference", "reference"),
    ("blog", "blog"),
    ("article", "blog"),
    ("news", "news"),
    ("video", "video"),
    ("course", "education"),
    ("learning", "education"),
    ("tool", "tool"),
    ("app", "tool"),
    ("software", "tool"),
)

_KEYWORD_PATTERNS = tuple(
    (re.compile(r"\b" + re.escape(keyword) + r"\b"), category)
    for keyword, category in KEYWORD_CATEGORIES
)


def _category_for_host(hostname: str) -> Optional[str]:
    if hostname.startswith("www."):
        hostname = hostname[4:]
    for domain, category in DOMAIN_CATEGORIES.items():
        if hostname == domain or hostname.endswith("." + domain):
            return category
    return None


def _category_for_text(text: str) -> Optional[str]:
    for pattern, category in _KEYWORD_PATTERNS:
        if pattern.search(text):
            return category
    return None


def categorize(
    url: str,
    title: str = "",
    description: str = "",
    keywords: Iterable[str] = (),
) -> Optional[str]:
    """Pick a category for a bookmark.

    Args:
        url: Bookmark URL.
        title: Bookmark title.
        description: Page description, if known.
        keywords: Page meta keywords, if known.

    Returns:
        Category name, or None when nothing matched.
    """
    try:
        parts = urlsplit(url)
        hostname = (parts.hostname or "").lower()
    except ValueError:
        hostname = ""
        path = ""
    else:
        path = parts.path.lower()

    if hostname:
        category = _category_for_host(hostname)
        if category:
            return category

    for fragment, category in PATH_CATEGORIES:
        if fragment in path:
            return category

    category = _category_for_text(f"{title or ''} {description or ''}".lower())
    if category:
        return category

    return _category_for_text(" ".join(keywords).lower())
