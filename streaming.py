# streaming.py
"""
Episode streaming-link resolution.

An otakudesu episode page lists its players per quality tier. Each player
anchor carries a ``data-content`` attribute holding base64 JSON (episode id,
mirror index, quality). Turning that into a playable URL takes a short
handshake with the site's admin-ajax endpoint:

1. POST the nonce action to obtain a short-lived nonce.
2. POST the decoded payload together with the nonce and the resolve action,
   with the episode page as referer.
3. Base64-decode the ``data`` field of the answer into an HTML fragment and
   take the ``src`` of the iframe it contains.

Every mirror is resolved concurrently and a failing mirror only loses its own
URL. The nonce, the mirror fan-out and the download section are independent
branches; a failing branch falls back to an empty value and only a missing
episode title is fatal.
"""
import asyncio
import base64
import binascii
import json
import logging
import re
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup
from httpx import AsyncClient, HTTPError

from config import Settings
from exceptions import DecodeError, NotFoundError
from models import DownloadLink, MirrorDescriptor, QualityTier, ResolvedMirror, StreamingResult
from utils import build_url, settle

logger = logging.getLogger(__name__)

IFRAME_SRC_PATTERN = re.compile(r'src="([^"]+)"')
QUALITY_CLASS_PATTERN = re.compile(r'^m(\d{3,4}p)$')


def _pad_base64(token: str) -> str:
    token = re.sub(r'\s+', '', token)
    return token + '=' * (-len(token) % 4)


def decode_payload(content: Optional[str]) -> Dict[str, Any]:
    """Decode a ``data-content`` token into the parameter map the resolve call expects."""
    if not content or not isinstance(content, str):
        raise DecodeError("Empty mirror payload")
    token = _pad_base64(content)
    try:
        raw = base64.b64decode(token, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Malformed base64 payload: {e}") from e
    try:
        text = raw.decode('utf-8')
    except UnicodeDecodeError as e:
        raise DecodeError(f"Payload is not valid UTF-8: {e}") from e
    try:
        params = json.loads(text)
    except ValueError as e:
        raise DecodeError(f"Payload is not valid JSON: {e}") from e
    if not isinstance(params, dict):
        raise DecodeError(f"Payload is a JSON {type(params).__name__}, expected an object")
    return params


def ajax_headers(settings: Settings, referer: Optional[str] = None) -> Dict[str, str]:
    headers = {
        'x-requested-with': 'XMLHttpRequest',
        'origin': settings.source_url,
    }
    if referer:
        headers['referer'] = referer
    return headers


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if value is None:
        return 'null'
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(',', ':'))
    return str(value)


async def get_nonce(client: AsyncClient, settings: Settings, referer: Optional[str] = None) -> Optional[str]:
    """Fetch a fresh nonce for this resolution session; ``None`` on any failure."""
    try:
        response = await client.post(
            settings.ajax_url,
            data={'action': settings.nonce_action},
            headers=ajax_headers(settings, referer),
            timeout=settings.request_timeout,
        )
        response.raise_for_status()
        body = response.json()
    except (HTTPError, ValueError) as e:
        logger.warning(f"Failed to get nonce: {e}")
        return None

    nonce = body.get('data') if isinstance(body, dict) else None
    if not nonce or not isinstance(nonce, str):
        logger.warning("Failed to get nonce: response has no data field")
        return None
    return nonce


async def fetch_iframe_url(
    params: Dict[str, Any],
    nonce: str,
    slug: str,
    client: AsyncClient,
    settings: Settings,
) -> Optional[str]:
    """Resolve one decoded mirror payload to its embeddable player URL."""
    body = {key: _form_value(value) for key, value in params.items()}
    body['nonce'] = nonce
    body['action'] = settings.resolve_action
    referer = build_url(settings.source_url, f"/episode/{slug}")

    try:
        response = await client.post(
            settings.ajax_url,
            data=body,
            headers=ajax_headers(settings, referer),
            timeout=settings.request_timeout,
        )
        response.raise_for_status()
        payload = response.json()
    except (HTTPError, ValueError) as e:
        logger.warning(f"Failed to fetch iframe URL: {e}")
        return None

    encoded = payload.get('data') if isinstance(payload, dict) else None
    if not encoded or not isinstance(encoded, str):
        return None

    try:
        html = base64.b64decode(_pad_base64(encoded)).decode('utf-8', errors='replace')
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Failed to decode iframe fragment: {e}")
        return None

    match = IFRAME_SRC_PATTERN.search(html)
    return match.group(1) if match else None


async def resolve_mirror(
    mirror: MirrorDescriptor,
    nonce: str,
    slug: str,
    client: AsyncClient,
    settings: Settings,
) -> ResolvedMirror:
    try:
        params = decode_payload(mirror.encoded_payload)
    except DecodeError as e:
        logger.warning(f"Skipping mirror '{mirror.label}': {e}")
        return ResolvedMirror(label=mirror.label, url=None)

    try:
        url = await fetch_iframe_url(params, nonce, slug, client, settings)
    except Exception as e:
        logger.warning(f"Mirror '{mirror.label}' failed to resolve: {e}")
        url = None
    return ResolvedMirror(label=mirror.label, url=url)


async def resolve_quality_tiers(
    tiers: List[QualityTier],
    nonce: Optional[str],
    slug: str,
    client: AsyncClient,
    settings: Settings,
) -> Dict[str, List[ResolvedMirror]]:
    """
    Resolve every mirror of every tier concurrently.

    Each tier keeps one entry per mirror, in page order; failed mirrors carry
    ``url=None``. Without a nonce nothing can be resolved and every tier maps
    to an empty list.
    """
    if not nonce:
        logger.warning(f"No nonce available for {slug}, skipping {len(tiers)} quality tiers")
        return {tier.quality: [] for tier in tiers}

    async def resolve_tier(tier: QualityTier) -> List[ResolvedMirror]:
        return list(await asyncio.gather(
            *[resolve_mirror(mirror, nonce, slug, client, settings) for mirror in tier.mirrors]
        ))

    resolved = await asyncio.gather(*[resolve_tier(tier) for tier in tiers])
    mirrors = {tier.quality: links for tier, links in zip(tiers, resolved)}

    total = sum(len(links) for links in resolved)
    ok = sum(1 for links in resolved for link in links if link.url)
    logger.info(f"Resolved {ok}/{total} mirrors across {len(tiers)} quality tiers for {slug}")
    return mirrors


def extract_title(soup: BeautifulSoup) -> str:
    title_tag = soup.select_one('.venutama h1')
    return title_tag.get_text(strip=True) if title_tag else ''


def extract_iframe(soup: BeautifulSoup) -> Optional[str]:
    iframe = soup.find('iframe')
    if not iframe:
        return None
    return iframe.get('src') or None


def _mirror_descriptors(container, selector: str) -> List[MirrorDescriptor]:
    return [
        MirrorDescriptor(label=anchor.get_text(strip=True), encoded_payload=anchor.get('data-content') or '')
        for anchor in container.select(selector)
    ]


def extract_quality_tiers(soup: BeautifulSoup) -> List[QualityTier]:
    """
    Read the mirror tabs of an episode page.

    The tabbed layout links each quality tab (``<a href="#m360p">360p</a>``) to
    the block holding its mirrors. Pages without tabs list one ``ul.m360p``
    per quality directly under ``.mirrorstream``.
    """
    tiers: Dict[str, QualityTier] = {}

    for tab in soup.select('.mirrorstream .tabs li a'):
        quality = tab.get_text(strip=True)
        target = tab.get('href') or ''
        if not quality or quality in tiers:
            continue
        container = soup.find(id=target[1:]) if target.startswith('#') and len(target) > 1 else None
        mirrors = _mirror_descriptors(container, 'ul li a') if container else []
        tiers[quality] = QualityTier(quality=quality, mirrors=mirrors)

    if not tiers:
        for block in soup.select('.mirrorstream ul'):
            quality = next(
                (m.group(1) for m in (QUALITY_CLASS_PATTERN.match(c) for c in block.get('class') or []) if m),
                None,
            )
            if not quality or quality in tiers:
                continue
            tiers[quality] = QualityTier(quality=quality, mirrors=_mirror_descriptors(block, 'li a'))

    return list(tiers.values())


def extract_download_links(soup: BeautifulSoup) -> Dict[str, List[DownloadLink]]:
    downloads: Dict[str, List[DownloadLink]] = {}
    for li in soup.select('.download ul li'):
        strong = li.find('strong')
        quality = strong.get_text(strip=True) if strong else ''
        if not quality:
            continue
        downloads[quality] = [
            DownloadLink(provider=a.get_text(strip=True), url=a.get('href'))
            for a in li.find_all('a')
        ]
    return downloads


async def assemble_streaming(
    soup: BeautifulSoup,
    slug: str,
    client: AsyncClient,
    settings: Settings,
) -> StreamingResult:
    """Build the streaming result for an already fetched episode page."""
    title = extract_title(soup)
    if not title:
        raise NotFoundError("Episode not found")

    iframe = extract_iframe(soup)
    tiers = extract_quality_tiers(soup)
    episode_url = build_url(settings.source_url, f"/episode/{slug}")

    # One nonce per resolution session, shared by every mirror call
    nonce_task = asyncio.ensure_future(get_nonce(client, settings, referer=episode_url))

    async def mirrors_branch() -> Dict[str, List[ResolvedMirror]]:
        nonce = await asyncio.shield(nonce_task)
        return await resolve_quality_tiers(tiers, nonce, slug, client, settings)

    async def downloads_branch() -> Dict[str, List[DownloadLink]]:
        return extract_download_links(soup)

    try:
        nonce, mirrors, downloads = await asyncio.gather(
            settle(nonce_task, 'nonce'),
            settle(mirrors_branch(), 'mirrors'),
            settle(downloads_branch(), 'downloads'),
        )
    finally:
        if not nonce_task.done():
            nonce_task.cancel()

    if not nonce.value_or(None):
        logger.warning(f"Streaming for {slug} assembled without a nonce")

    return StreamingResult(
        title=title,
        iframe=iframe,
        mirrors=mirrors.value_or({tier.quality: [] for tier in tiers}),
        downloads=downloads.value_or({}),
    )
