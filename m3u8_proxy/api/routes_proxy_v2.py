#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import json
import logging
import os
from urllib.parse import urlsplit

import aiohttp
from quart import Response, jsonify, request, stream_with_context
from werkzeug.datastructures import Headers

from m3u8_proxy.api import blueprint
from m3u8_proxy.playlist_rewriter import PROXY_ENTRY_PATH, rewrite_playlist

proxy_logger = logging.getLogger("proxy")


def _normalize_prefix(prefix):
    if not prefix or prefix == "/":
        return ""
    return "/" + prefix.strip("/")


m3u8_proxy_prefix = _normalize_prefix(os.environ.get("M3U8_PROXY_PREFIX", "/"))
proxy_entry_path = f"{m3u8_proxy_prefix}{PROXY_ENTRY_PATH}"

# Substrings of Content-Type values that servers use for HLS playlists
M3U8_CONTENT_TYPES = (
    "application/x-mpegurl",
    "application/mpegurl",
    "application/vnd.apple.mpegurl",
    "application/vnd.apple.mpegurl.audio",
    "application/vnd.apple.mpegurl.video",
    "audio/mpegurl",
    "audio/x-mpegurl",
    "video/x-mpegurl",
)

# Sent upstream with every request, before the caller's own headers
UPSTREAM_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

HOP_BY_HOP_HEADERS = (
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
)

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "DELETE", "OPTIONS"]


def _error_response(message):
    response = jsonify({"success": False, "message": message})
    response.status_code = 400
    return response


def _is_valid_scrape_url(scrape_url):
    try:
        parts = urlsplit(scrape_url)
        # Accessing the port validates it
        parts.port
    except ValueError:
        return False
    return bool(parts.scheme and parts.netloc)


def parse_scrape_headers(scrape_headers_string):
    """Parse the caller's JSON header set. Anything unusable is treated as no headers."""
    if not scrape_headers_string:
        return {}
    try:
        scrape_headers = json.loads(scrape_headers_string)
    except ValueError:
        proxy_logger.warning("[M3U8 PROXY V2] Malformed scrape headers, using default")
        return {}
    if not isinstance(scrape_headers, dict):
        proxy_logger.warning("[M3U8 PROXY V2] Scrape headers are not a JSON object, using default")
        return {}
    return {str(name): str(value) for name, value in scrape_headers.items()}


def build_upstream_headers(scrape_headers, range_header=None):
    headers = dict(UPSTREAM_CORS_HEADERS)
    headers.update(scrape_headers)
    if range_header:
        headers["Range"] = range_header
    return headers


def is_m3u8_response(scrape_url, content_type):
    if urlsplit(scrape_url).path.endswith(".m3u8"):
        return True
    content_type = (content_type or "").lower()
    return any(name in content_type for name in M3U8_CONTENT_TYPES)


def build_response_headers(upstream_headers, body_rewritten=False):
    """
    Copy the upstream response headers for the client.

    Hop-by-hop headers are dropped. Length and encoding headers are dropped too
    when the body sent to the client is no longer the bytes the upstream sent.
    """
    decompressed = any(name.lower() == "content-encoding" for name in upstream_headers.keys())
    headers = Headers()
    for name, value in upstream_headers.items():
        lower_name = name.lower()
        if lower_name in HOP_BY_HOP_HEADERS:
            continue
        if (body_rewritten or decompressed) and lower_name in ("content-length", "content-encoding"):
            continue
        headers.add(name, value)
    headers["Access-Control-Allow-Origin"] = "*"
    return headers


@blueprint.route(proxy_entry_path, methods=PROXY_METHODS)
async def m3u8_proxy_v2():
    scrape_url = request.args.get("url")
    scrape_headers_string = request.args.get("headers")

    if not scrape_url:
        return _error_response("no scrape url provided")
    if not _is_valid_scrape_url(scrape_url):
        proxy_logger.error("Malformed scrape URL: %s", scrape_url)
        return _error_response("malformed scrape url")

    scrape_headers = parse_scrape_headers(scrape_headers_string)
    upstream_headers = build_upstream_headers(scrape_headers, request.headers.get("Range"))

    proxy_logger.info("[M3U8 PROXY V2] %s '%s'", request.method, scrape_url)
    session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))
    try:
        resp = await session.request(request.method, scrape_url, headers=upstream_headers)
    except Exception:
        await session.close()
        raise

    try:
        if is_m3u8_response(scrape_url, resp.headers.get("Content-Type")):
            playlist_content = await resp.text(errors="replace")
            updated_playlist = rewrite_playlist(
                playlist_content,
                scrape_url,
                scrape_headers=scrape_headers_string,
                entry_path=proxy_entry_path,
            )
            headers = build_response_headers(resp.headers, body_rewritten=True)
            status = resp.status
            await resp.release()
            await session.close()
            return Response(updated_playlist, status=status, headers=headers)
    except Exception:
        await resp.release()
        await session.close()
        raise

    @stream_with_context
    async def generate():
        try:
            async for chunk in resp.content.iter_chunked(65536):
                yield chunk
        finally:
            await resp.release()
            await session.close()

    # Status and headers are passed through, the body is streamed as it arrives
    response = Response(generate(), status=resp.status, headers=build_response_headers(resp.headers))
    response.timeout = None
    return response
