"""Platform classifier for bookmark URLs.

This module recognizes URLs on well-known content platforms (YouTube, GitHub,
Medium, dev.to, Substack, Twitter/X, Reddit, Stack Overflow, npm) and extracts
structured facts from the URL alone: content type, creator, identifier and
platform-specific extras. No network access.

Each platform is a host pattern plus an ordered list of path rules, most
specific first. The first rule that matches wins, so an ``issues/<n>`` rule is
listed before the generic repository rule.
"""

import logging
import re
from dataclasses import dataclass, field
from string import Formatter
from typing import Callable, Mapping, Optional
from urllib.parse import SplitResult, parse_qs, urlsplit

from bookmark_insights.core.bookmark import PlatformInfo
from bookmark_insights.enrichment.metadata_extractor import json_ld_types

logger = logging.getLogger(__name__)

_FORMATTER = Formatter()


@dataclass(frozen=True)
class PathRule:
    """One recognizable URL shape on a platform.

    ``creator``, ``identifier`` and ``subtype`` are format templates over the
    path groups, host groups and query parameters. A template that references
    a missing value renders as None. ``extra`` maps output keys to variable
    names; missing values are left out. ``requires`` lists variables that must
    be present for the rule to apply at all.
    """

    pattern: re.Pattern
    content_type: str
    creator: Optional[str] = None
    identifier: Optional[str] = None
    subtype: Optional[str] = None
    extra: Mapping[str, str] = field(default_factory=dict)
    requires: tuple[str, ...] = ()
    finalize: Optional[Callable[[PlatformInfo, SplitResult], None]] = None


@dataclass(frozen=True)
class Platform:
    name: str
    host: re.Pattern
    rules: tuple[PathRule, ...]


def _rule(pattern: str, content_type: str, **kwargs) -> PathRule:
    return PathRule(pattern=re.compile(pattern), content_type=content_type, **kwargs)


def _add_file_extension(info: PlatformInfo, parts: SplitResult) -> None:
    path = info.extra.get("path")
    if info.subtype != "blob" or not path:
        return
    match = re.search(r"\.([A-Za-z0-9]+)$", path.rsplit("/", 1)[-1])
    if match:
        info.extra["extension"] = match.group(1).lower()


def _add_answer_anchor(info: PlatformInfo, parts: SplitResult) -> None:
    if parts.fragment.isdigit():
        info.subtype = "answer"
        info.extra["answer_id"] = parts.fragment


_NPM_TABS = frozenset({"readme", "versions", "dependencies", "dependents", "code"})


def _add_npm_tab(info: PlatformInfo, parts: SplitResult) -> None:
    last = parts.path.rstrip("/").rsplit("/", 1)[-1]
    if last in _NPM_TABS:
        info.extra["tab"] = last


# GitHub repository prefix: /OWNER/REPO
_REPO = r"^/(?P<owner>[^/]+)/(?P<repo>[^/]+)"
_IN_REPO = {"creator": "{owner}", "identifier": "{repo}"}

PLATFORMS: tuple[Platform, ...] = (
    Platform(
        name="youtube",
        host=re.compile(r"^(?:www\.|m\.|music\.)?youtube\.com$"),
        rules=(
            _rule(r"^/watch$", "video", identifier="{v}", requires=("v",),
                  extra={"playlist_id": "list", "timestamp": "t"}),
            _rule(r"^/shorts/(?P<video_id>[^/]+)", "video", identifier="{video_id}",
                  subtype="short"),
            _rule(r"^/live/(?P<video_id>[^/]+)", "video", identifier="{video_id}",
                  subtype="live"),
            _rule(r"^/@(?P<handle>[^/]+)(?:/(?P<section>[^/]+))?", "channel",
                  creator="@{handle}", identifier="{handle}", extra={"section": "section"}),
            _rule(r"^/channel/(?P<channel_id>[^/]+)(?:/(?P<section>[^/]+))?", "channel",
                  identifier="{channel_id}", extra={"section": "section"}),
            _rule(r"^/(?P<url_type>c|user)/(?P<name>[^/]+)", "channel",
                  identifier="{name}", extra={"url_type": "url_type"}),
            _rule(r"^/playlist$", "playlist", identifier="{list}", requires=("list",)),
            _rule(r"^/results$", "search", extra={"query": "search_query"},
                  requires=("search_query",)),
        ),
    ),
    Platform(
        name="youtube",
        host=re.compile(r"^youtu\.be$"),
        rules=(
            _rule(r"^/(?P<video_id>[^/]+)$", "video", identifier="{video_id}",
                  extra={"timestamp": "t"}),
        ),
    ),
    Platform(
        name="github",
        host=re.compile(r"^gist\.github\.com$"),
        rules=(
            _rule(r"^/(?P<user>[^/]+)(?:/(?P<gist_id>[^/]+))?", "gist",
                  creator="{user}", identifier="{gist_id}"),
        ),
    ),
    Platform(
        name="github",
        host=re.compile(r"^(?:www\.)?github\.com$"),
        rules=(
            _rule(r"^/$", "home"),
            _rule(
                r"^/(?P<page>explore|trending|topics|collections|sponsors|marketplace"
                r"|settings|notifications)$",
                "special",
                identifier="{page}",
            ),
            _rule(r"^/(?P<owner>[^/]+)$", "profile", creator="{owner}", identifier="{owner}"),
            _rule(_REPO + r"$", "repo", **_IN_REPO),
            _rule(_REPO + r"/issues$", "issues", subtype="list", **_IN_REPO),
            _rule(_REPO + r"/issues/new$", "issues", subtype="new", **_IN_REPO),
            _rule(_REPO + r"/issues/(?P<issue_number>\d+)", "issue",
                  extra={"issue_number": "issue_number"}, **_IN_REPO),
            _rule(_REPO + r"/pull/(?P<pr_number>\d+)(?:/(?P<tab>[^/]+))?", "pull-request",
                  extra={"pr_number": "pr_number", "tab": "tab"}, **_IN_REPO),
            _rule(_REPO + r"/pulls", "pulls", subtype="list", **_IN_REPO),
            _rule(_REPO + r"/actions/runs/(?P<run_id>[^/]+)", "actions", subtype="run",
                  extra={"run_id": "run_id"}, **_IN_REPO),
            _rule(_REPO + r"/actions/workflows/(?P<workflow>[^/]+)", "actions",
                  subtype="workflow", extra={"workflow_file": "workflow"}, **_IN_REPO),
            _rule(_REPO + r"/actions", "actions", **_IN_REPO),
            _rule(_REPO + r"/releases/tag/(?P<tag>[^/]+)", "releases", subtype="tag",
                  extra={"tag": "tag"}, **_IN_REPO),
            _rule(_REPO + r"/releases/latest", "releases", subtype="latest", **_IN_REPO),
            _rule(_REPO + r"/releases", "releases", **_IN_REPO),
            _rule(_REPO + r"/wiki(?:/(?P<page>.+))?$", "wiki", extra={"page": "page"},
                  **_IN_REPO),
            _rule(_REPO + r"/discussions/(?P<discussion_number>\d+)", "discussions",
                  subtype="discussion",
                  extra={"discussion_number": "discussion_number"}, **_IN_REPO),
            _rule(_REPO + r"/discussions", "discussions", **_IN_REPO),
            _rule(_REPO + r"/commit/(?P<sha>[^/]+)", "commit", extra={"sha": "sha"},
                  **_IN_REPO),
            _rule(_REPO + r"/commits(?:/(?P<branch>[^/]+))?", "commits",
                  extra={"branch": "branch"}, **_IN_REPO),
            _rule(_REPO + r"/branches", "branches", **_IN_REPO),
            _rule(_REPO + r"/tags", "tags", **_IN_REPO),
            _rule(
                _REPO + r"/(?P<kind>blob|tree)(?:/(?P<branch>[^/]+)(?:/(?P<path>.+))?)?$",
                "file",
                subtype="{kind}",
                extra={"branch": "branch", "path": "path"},
                finalize=_add_file_extension,
                **_IN_REPO,
            ),
            _rule(_REPO + r"/search", "search", extra={"query": "q"}, **_IN_REPO),
            _rule(_REPO + r"/(?P<sub_path>.+)$", "repo", extra={"sub_path": "sub_path"},
                  **_IN_REPO),
        ),
    ),
    Platform(
        name="medium",
        host=re.compile(r"^(?:www\.)?medium\.com$"),
        rules=(
            _rule(r"^/(?P<author>@[^/]+)$", "profile", creator="{author}",
                  identifier="{author}"),
            _rule(r"^/(?P<author>@[^/]+)/(?P<slug>[^/]+)", "article", creator="{author}",
                  identifier="{slug}"),
            _rule(r"^/(?P<publication>[^/]+)/(?:.+/)?(?P<slug>[^/]+)$", "article",
                  identifier="{slug}", extra={"publication": "publication"}),
            _rule(r"^/(?P<publication>[^/]+)$", "publication", identifier="{publication}",
                  extra={"publication": "publication"}),
        ),
    ),
    Platform(
        name="medium",
        host=re.compile(r"^(?P<publication>[a-z0-9-]+)\.medium\.com$"),
        rules=(
            _rule(r"^/$", "publication", identifier="{publication}",
                  extra={"publication": "publication"}),
            _rule(r"^/(?:(?P<author>@[^/]+)/)?(?:.+/)?(?P<slug>[^/]*-[^/]*)$", "article",
                  creator="{author}", identifier="{slug}",
                  extra={"publication": "publication"}),
        ),
    ),
    Platform(
        name="devto",
        host=re.compile(r"^(?:www\.)?dev\.to$"),
        rules=(
            _rule(r"^/$", "home"),
            _rule(r"^/t/(?P<tag>[^/]+)", "tag", identifier="{tag}"),
            _rule(r"^/(?P<user>[^/]+)$", "profile", creator="{user}", identifier="{user}"),
            _rule(r"^/(?P<user>[^/]+)/(?P<slug>[^/]+)", "article", creator="{user}",
                  identifier="{slug}"),
        ),
    ),
    Platform(
        name="substack",
        host=re.compile(r"^(?P<publication>[a-z0-9-]+)\.substack\.com$"),
        rules=(
            _rule(r"^/$", "publication", creator="{publication}",
                  identifier="{publication}", extra={"publication": "publication"}),
            _rule(r"^/p/(?P<slug>[^/]+)", "article", creator="{publication}",
                  identifier="{slug}", extra={"publication": "publication"}),
            _rule(r"^/archive", "archive", creator="{publication}",
                  identifier="{publication}", extra={"publication": "publication"}),
            _rule(r"^/about", "about", creator="{publication}",
                  identifier="{publication}", extra={"publication": "publication"}),
        ),
    ),
    Platform(
        name="twitter",
        host=re.compile(r"^(?:www\.|mobile\.)?(?:twitter|x)\.com$"),
        rules=(
            _rule(r"^/$", "home"),
            _rule(r"^/(?P<page>home|explore|search|notifications|messages|settings|i)(?:/|$)",
                  "special", identifier="{page}"),
            _rule(r"^/hashtag/(?P<tag>[^/]+)", "hashtag", identifier="{tag}"),
            _rule(r"^/(?P<user>[^/]+)/status/(?P<tweet_id>[^/]+)", "tweet",
                  creator="@{user}", identifier="{tweet_id}"),
            _rule(r"^/(?P<user>[^/]+)/(?P<section>followers|following|likes|lists|moments)",
                  "profile", creator="@{user}", identifier="{user}",
                  extra={"section": "section"}),
            _rule(r"^/(?P<user>[^/]+)$", "profile", creator="@{user}", identifier="{user}"),
        ),
    ),
    Platform(
        name="reddit",
        host=re.compile(r"^(?:[a-z0-9-]+\.)?reddit\.com$"),
        rules=(
            _rule(r"^/$", "home"),
            _rule(r"^/r/(?P<subreddit>[^/]+)/comments/(?P<post_id>[^/]+)(?:/(?P<slug>[^/]+))?",
                  "post", creator="r/{subreddit}", identifier="{post_id}",
                  extra={"subreddit": "subreddit", "slug": "slug"}),
            _rule(r"^/r/(?P<subreddit>[^/]+)", "subreddit", creator="r/{subreddit}",
                  identifier="{subreddit}"),
            _rule(r"^/(?:u|user)/(?P<user>[^/]+)(?:/(?P<section>[^/]+))?", "profile",
                  creator="u/{user}", identifier="{user}", extra={"section": "section"}),
        ),
    ),
    Platform(
        name="stackoverflow",
        host=re.compile(
            r"^(?:(?:www\.)?stackoverflow\.com|(?P<site>[a-z0-9-]+)\.stackexchange\.com)$"
        ),
        rules=(
            _rule(r"^/$", "home", extra={"site": "site"}),
            _rule(r"^/questions/tagged/(?P<tag>[^/]+)", "tag", identifier="{tag}",
                  extra={"site": "site"}),
            _rule(r"^/questions/(?P<question_id>\d+)", "question",
                  identifier="{question_id}", extra={"site": "site"},
                  finalize=_add_answer_anchor),
            _rule(r"^/users/(?P<user_id>[^/]+)(?:/(?P<user>[^/]+))?", "profile",
                  creator="{user}", identifier="{user_id}", extra={"site": "site"}),
            _rule(r"^/tags(?:/(?P<tag>[^/]+))?", "tags", identifier="{tag}",
                  extra={"site": "site"}),
        ),
    ),
    Platform(
        name="npm",
        host=re.compile(r"^(?:www\.)?npmjs\.com$"),
        rules=(
            _rule(r"^/$", "home"),
            _rule(r"^/package/(?P<scope>@[^/]+)/(?P<name>[^/]+)", "package",
                  creator="{scope}", identifier="{scope}/{name}", finalize=_add_npm_tab),
            _rule(r"^/package/(?P<name>[^/]+)", "package", identifier="{name}",
                  finalize=_add_npm_tab),
            _rule(r"^/~(?P<user>[^/]+)", "profile", creator="{user}", identifier="{user}"),
            _rule(r"^/org/(?P<org>[^/]+)", "org", creator="{org}", identifier="{org}"),
            _rule(r"^/search$", "search", extra={"query": "q"}),
        ),
    ),
)

DISPLAY_NAMES = {
    "youtube": "YouTube",
    "github": "GitHub",
    "medium": "Medium",
    "devto": "DEV Community",
    "substack": "Substack",
    "twitter": "Twitter/X",
    "reddit": "Reddit",
    "stackoverflow": "Stack Overflow",
    "npm": "npm",
}

# schema.org @type -> (content_type, subtype)
SCHEMA_TYPES = {
    "TechArticle": ("tech-article", "technical"),
    "BlogPosting": ("blog-post", "blog"),
    "NewsArticle": ("news-article", "news"),
    "ScholarlyArticle": ("scholarly-article", "academic"),
    "VideoObject": ("video", "video-content"),
    "Course": ("course", "education"),
    "HowTo": ("tutorial", "how-to"),
    "FAQPage": ("faq", "reference"),
    "SoftwareApplication": ("software", "tool"),
    "APIReference": ("api-docs", "documentation"),
}


def _render(template: Optional[str], variables: Mapping[str, str]) -> Optional[str]:
    if template is None:
        return None
    names = [name for _, name, _, _ in _FORMATTER.parse(template) if name]
    if any(not variables.get(name) for name in names):
        return None
    return template.format_map(variables)


def _normalize_path(path: str) -> str:
    segments = [s for s in path.split("/") if s]
    return "/" + "/".join(segments)


def _apply(rule: PathRule, platform: str, variables: Mapping[str, str]) -> PlatformInfo:
    extra = {
        key: variables[name] for key, name in rule.extra.items() if variables.get(name)
    }
    return PlatformInfo(
        platform=platform,
        content_type=rule.content_type,
        creator=_render(rule.creator, variables),
        identifier=_render(rule.identifier, variables),
        subtype=_render(rule.subtype, variables),
        extra=extra,
    )


def classify(url: str) -> Optional[PlatformInfo]:
    """Classify a URL against the known platforms.

    Args:
        url: Bookmark URL.

    Returns:
        PlatformInfo for a recognized host (``content_type`` is None when no
        path rule matched), or None for unknown hosts and unparsable URLs.
    """
    try:
        parts = urlsplit(url)
        hostname = (parts.hostname or "").lower()
    except ValueError:
        logger.debug("Unparsable URL: %s", url)
        return None
    if parts.scheme not in ("http", "https") or not hostname:
        return None

    for platform in PLATFORMS:
        host_match = platform.host.match(hostname)
        if host_match is None:
            continue

        query = {k: v[0] for k, v in parse_qs(parts.query).items() if v}
        host_vars = {k: v for k, v in host_match.groupdict().items() if v}
        path = _normalize_path(parts.path)

        for rule in platform.rules:
            match = rule.pattern.match(path)
            if match is None:
                continue
            variables = {**query, **host_vars}
            variables.update({k: v for k, v in match.groupdict().items() if v})
            if any(not variables.get(name) for name in rule.requires):
                continue

            info = _apply(rule, platform.name, variables)
            if rule.finalize is not None:
                rule.finalize(info, parts)
            return info

        return PlatformInfo(platform=platform.name)

    return None


def schema_content_type(json_ld: list) -> Optional[tuple[str, str]]:
    """First (content_type, subtype) implied by a schema.org ``@type``."""
    for schema_type in json_ld_types(json_ld):
        if schema_type in SCHEMA_TYPES:
            return SCHEMA_TYPES[schema_type]
    return None


def refine_with_json_ld(
    info: Optional[PlatformInfo], json_ld: list
) -> Optional[PlatformInfo]:
    """Fill in content type and subtype from JSON-LD when the URL left them open.

    Values already inferred from the URL are kept.

    Args:
        info: Result of ``classify``; None passes through unchanged.
        json_ld: Parsed JSON-LD blocks from the page.

    Returns:
        The same PlatformInfo, refined in place.
    """
    if info is None:
        return None
    mapped = schema_content_type(json_ld)
    if mapped is None:
        return info

    content_type, subtype = mapped
    if info.content_type is None:
        info.content_type = content_type
    if info.subtype is None and info.content_type == content_type:
        info.subtype = subtype
    return info


def display_name(platform: Optional[str]) -> str:
    """Human-readable platform name (``"Other"`` for None)."""
    if platform is None:
        return "Other"
    return DISPLAY_NAMES.get(platform, platform)
