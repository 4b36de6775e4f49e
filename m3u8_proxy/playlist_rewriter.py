#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import logging
from collections import namedtuple
from urllib.parse import urlencode

from m3u8_proxy.url_resolver import resolve

proxy_logger = logging.getLogger("proxy")

PROXY_ENTRY_PATH = "/v2"

MAP_TAG_PREFIX = '#EXT-X-MAP:URI="'

# Attribute keys whose values reference another resource
REFERENCE_ATTRIBUTES = ("URI", "URL")

AttributeValue = namedtuple("AttributeValue", ["value", "quoted"])


def build_proxied_url(target_url, scrape_headers=None, entry_path=PROXY_ENTRY_PATH):
    params = {"url": target_url}
    if scrape_headers:
        params["headers"] = scrape_headers
    return f"{entry_path}?{urlencode(params)}"


def _split_top_level(text, separator):
    """Split on ``separator`` wherever it is not inside a double-quoted string."""
    parts = []
    current = []
    in_quotes = False
    for char in text:
        if char == '"':
            in_quotes = not in_quotes
        elif char == separator and not in_quotes:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return parts


def parse_attribute_list(attribute_list):
    """
    Parse the ``KEY=VALUE,KEY="VALUE"`` payload of a tag line.

    Commas inside quoted values do not end a pair. Pairs with an empty key or an
    empty value are dropped, and a key seen twice keeps its first position with
    the later value.
    """
    attributes = {}
    for token in _split_top_level(attribute_list, ","):
        key, _, value = token.partition("=")
        key = key.strip()
        value = value.strip()
        quoted = len(value) >= 2 and value.startswith('"') and value.endswith('"')
        value = value.replace('"', "")
        if not key or not value:
            continue
        attributes[key] = AttributeValue(value, quoted)
    return attributes


def format_attribute_list(attributes):
    pairs = []
    for key, attribute in attributes.items():
        if attribute.quoted:
            pairs.append(f'{key}="{attribute.value}"')
        else:
            pairs.append(f"{key}={attribute.value}")
    return ",".join(pairs)


def _rewrite_map_tag(line, base_url, scrape_headers, entry_path):
    remainder = line[len(MAP_TAG_PREFIX):]
    uri, closing_quote, trailing = remainder.partition('"')
    target_url = resolve(uri, base_url)
    proxied_url = build_proxied_url(target_url, scrape_headers, entry_path=entry_path)
    return f'{MAP_TAG_PREFIX}{proxied_url}"{trailing}'


def _rewrite_attributed_tag(line, base_url, scrape_headers, entry_path):
    top_key, colon, attribute_list = line.partition(":")
    if not colon:
        return line
    attributes = parse_attribute_list(attribute_list)
    if not any(key in attributes for key in REFERENCE_ATTRIBUTES):
        return line

    for key in REFERENCE_ATTRIBUTES:
        if key in attributes:
            target_url = resolve(attributes[key].value, base_url)
            proxied_url = build_proxied_url(target_url, scrape_headers, entry_path=entry_path)
            attributes[key] = AttributeValue(proxied_url, True)

    return f"{top_key}:{format_attribute_list(attributes)}"


def rewrite_playlist_line(line, base_url, scrape_headers=None, entry_path=PROXY_ENTRY_PATH):
    line_ending = ""
    if line.endswith("\r"):
        line, line_ending = line[:-1], "\r"

    stripped_line = line.strip()
    if not stripped_line:
        updated_line = line
    elif line.startswith(MAP_TAG_PREFIX):
        updated_line = _rewrite_map_tag(line, base_url, scrape_headers, entry_path)
    elif line.startswith("#"):
        lower_line = line.lower()
        if "uri" in lower_line or "url" in lower_line:
            updated_line = _rewrite_attributed_tag(line, base_url, scrape_headers, entry_path)
        else:
            updated_line = line
    else:
        target_url = resolve(stripped_line, base_url)
        updated_line = build_proxied_url(target_url, scrape_headers, entry_path=entry_path)

    return updated_line + line_ending


def rewrite_playlist(playlist_content, base_url, scrape_headers=None, entry_path=PROXY_ENTRY_PATH):
    """
    Rewrite every reference in a playlist so it is fetched back through the proxy.

    ``base_url`` is the URL the playlist was fetched from. ``scrape_headers`` is the
    caller's serialized header set, attached unchanged to every proxied URL.
    The output has exactly one line for each input line.
    """
    proxy_logger.debug("Original Playlist Content:\n%s", playlist_content)

    updated_lines = [
        rewrite_playlist_line(line, base_url, scrape_headers=scrape_headers, entry_path=entry_path)
        for line in playlist_content.split("\n")
    ]

    modified_playlist = "\n".join(updated_lines)
    proxy_logger.debug("Modified Playlist Content:\n%s", modified_playlist)
    return modified_playlist
