#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import logging
import re
from urllib.parse import quote, urlsplit, urlunsplit

proxy_logger = logging.getLogger("proxy")

# Returned whenever a reference cannot be turned into a usable URL
FALLBACK_URL = "https://example.com/"

_ABSOLUTE_URL_RE = re.compile(r"^https?://", re.IGNORECASE)

# Characters left as-is when a joined path is re-encoded
_PATH_SAFE_CHARS = "/%:@!$&'()*+,;=~"


def _parse_absolute(url_value):
    parts = urlsplit(url_value)
    if not parts.scheme or not parts.hostname:
        raise ValueError(f"URL has no host: {url_value!r}")
    # Accessing the port validates it
    parts.port
    return url_value


def _remove_dot_segments(path):
    output = []
    segments = path.split("/")
    for index, segment in enumerate(segments):
        is_last = index == len(segments) - 1
        if segment == ".":
            if is_last:
                output.append("")
            continue
        if segment == "..":
            if len(output) > 1:
                output.pop()
            if is_last:
                output.append("")
            continue
        output.append(segment)
    joined = "/".join(output)
    if not joined.startswith("/"):
        joined = "/" + joined
    return joined


def _join_to_base_directory(reference, base):
    base_parts = urlsplit(base)
    if not base_parts.scheme or not base_parts.hostname:
        raise ValueError(f"Base URL has no host: {base!r}")
    base_parts.port

    # References are always resolved against the base directory, even when they look root-relative
    if reference.startswith("/"):
        reference = reference[1:]

    # A query or fragment on the reference replaces the base's own, otherwise the base's are kept
    reference, hash_sign, fragment = reference.partition("#")
    reference, question_mark, query = reference.partition("?")

    segments = base_parts.path.split("/")
    segments.pop()
    segments.append(reference)
    path = quote(_remove_dot_segments("/".join(segments)), safe=_PATH_SAFE_CHARS)

    return urlunsplit((
        base_parts.scheme,
        base_parts.netloc,
        path,
        query if question_mark else base_parts.query,
        fragment if hash_sign else base_parts.fragment,
    ))


def resolve(reference, base=None):
    """
    Turn a playlist reference into an absolute URL.

    Absolute http(s) references are returned unchanged and protocol-relative ones
    are given an https scheme. Anything else is appended to the directory of
    ``base``. This never raises; when no URL can be built ``FALLBACK_URL`` is
    returned instead.
    """
    try:
        if _ABSOLUTE_URL_RE.match(reference):
            return _parse_absolute(reference)
        if reference.startswith("//"):
            return _parse_absolute("https:" + reference)
        if base:
            return _join_to_base_directory(reference, base)
    except ValueError as e:
        proxy_logger.debug("Unable to resolve reference '%s' against '%s': %s", reference, base, e)
    return FALLBACK_URL
