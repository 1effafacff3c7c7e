# scraper.py
"""
Web scraper for anime data from otakudesu.

This module provides async functions to scrape:
- Ongoing and completed anime lists
- Anime search results
- Anime details (info table, episode list, recommendations)
- Episode streaming mirrors and download links (see streaming.py)

Every page fetch goes through ``fetch_page``, which applies the bounded retry
policy and maps transport failures to the scraper error types.
"""
from httpx import AsyncClient, HTTPStatusError, RequestError, TimeoutException
from bs4 import BeautifulSoup
from fastapi import Request
from urllib.parse import quote
import logging
from typing import Any, Dict, List

from config import Settings
from exceptions import NotFoundError, UpstreamHTTPError, UpstreamTimeout
from models import AnimeDetail, AnimeSummary, EpisodeLink, Recommendation, SearchResult, StreamingResult
from streaming import assemble_streaming
from utils import build_url, parse_slug_from_link, retry_request, settle_sync

logger = logging.getLogger(__name__)

ONGOING_PATH = 'ongoing-anime'
COMPLETED_PATH = 'complete-anime'


def create_http_client(settings: Settings, transport=None) -> AsyncClient:
    return AsyncClient(
        transport=transport,
        headers={
            "User-Agent": settings.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,image/apng,*/*;q=0.8",
        },
        timeout=settings.request_timeout,
        follow_redirects=True,
        max_redirects=5,
    )


# Dependency to provide the process-wide HTTP client
async def get_http_client(request: Request) -> AsyncClient:
    return request.app.state.http_client


async def fetch_page(url: str, client: AsyncClient, settings: Settings) -> BeautifulSoup:
    """GET an upstream page with retries and return it parsed."""
    async def request():
        response = await client.get(url)
        response.raise_for_status()
        return response

    logger.info(f"Scraping URL: {url}")
    try:
        response = await retry_request(request, max_retries=settings.max_retries, delay=settings.retry_delay)
    except HTTPStatusError as e:
        status_code = e.response.status_code
        logger.error(f"HTTP error {status_code} while scraping {url}: {e}")
        if status_code == 404:
            raise NotFoundError(f"Page not found: {url}") from e
        raise UpstreamHTTPError(f"Failed to fetch data: {e}", status_code) from e
    except TimeoutException as e:
        logger.error(f"Timeout while scraping {url}: {e}")
        raise UpstreamTimeout(f"Timed out fetching {url}") from e
    except RequestError as e:
        logger.error(f"Network error while scraping {url}: {e}")
        raise UpstreamHTTPError(f"Network error: {e}") from e

    return BeautifulSoup(response.text, 'html.parser')


def extract_basic_info(main) -> Dict[str, Any]:
    title_tag = main.select_one('.jdlrx h1')
    poster_tag = main.select_one('.fotoanime img')
    synopsis_tag = main.select_one('.sinopc')

    info: Dict[str, Any] = {
        'title': title_tag.get_text(strip=True) if title_tag else '',
        'poster': (poster_tag.get('src') or None) if poster_tag else None,
        'synopsis': (synopsis_tag.get_text(strip=True) if synopsis_tag else '') or 'No synopsis available.',
    }

    # Info table rows look like "<b>Japanese</b>: 薬屋のひとりごと"
    reserved = set(AnimeDetail.model_fields)
    for row in main.select('.infozingle p'):
        label = row.find('b')
        if not label:
            continue
        key = label.get_text().replace(':', '').strip().lower()
        key = '_'.join(key.split())
        text = row.get_text()
        value = text.split(':', 1)[1].strip() if ':' in text else ''

        if key == 'genre':
            info['genres'] = [a.get_text(strip=True) for a in row.find_all('a')]
        elif key and value and key not in reserved:
            info[key] = value
    return info


def extract_episodes(main, api_base_url: str) -> List[EpisodeLink]:
    episodes = []
    for li in main.select('.episodelist ul li'):
        link = li.find('a')
        if not link:
            continue
        ep_slug = parse_slug_from_link(link.get('href'), 'episode')
        if not ep_slug:
            continue
        date_tag = li.select_one('.zeebr')
        episodes.append(EpisodeLink(
            title=link.get_text(strip=True),
            slug=ep_slug,
            link=build_url(api_base_url, f"/episode/{ep_slug}"),
            date=(date_tag.get_text(strip=True) if date_tag else '') or None,
        ))
    # Latest episode first
    episodes.reverse()
    return episodes


def extract_recommendations(soup: BeautifulSoup, api_base_url: str) -> List[Recommendation]:
    recommendations = []
    for div in soup.select('#recommend-anime-series .isi-anime'):
        link = div.select_one('.judul-anime a')
        rec_slug = parse_slug_from_link(link.get('href'), 'anime') if link else None
        if not rec_slug:
            continue
        img = div.find('img')
        recommendations.append(Recommendation(
            title=link.get_text(strip=True),
            slug=rec_slug,
            link=build_url(api_base_url, f"/anime/{rec_slug}"),
            image=(img.get('src') or None) if img else None,
        ))
    return recommendations


async def get_anime_details(slug: str, client: AsyncClient, settings: Settings) -> AnimeDetail:
    url = build_url(settings.source_url, f"/anime/{slug}/")
    soup = await fetch_page(url, client, settings)

    main = soup.select_one('.venser')
    if not main:
        logger.error(f"Anime page structure mismatch for slug '{slug}'")
        raise NotFoundError("Anime not found (page structure mismatch)")

    basic_info = settle_sync(extract_basic_info, main, name='basic info')
    episodes = settle_sync(extract_episodes, main, settings.base_url, name='episodes')
    recommendations = settle_sync(extract_recommendations, soup, settings.base_url, name='recommendations')

    info = basic_info.value_or({})
    if not info.get('title'):
        raise NotFoundError("Anime not found (title could not be extracted)")

    detail = AnimeDetail(
        **info,
        episodes=episodes.value_or([]),
        recommendations=recommendations.value_or([]),
    )
    logger.info(f"Scraped anime detail for '{detail.title}': {len(detail.episodes)} episodes found")
    return detail


def parse_anime_list(soup: BeautifulSoup, api_base_url: str) -> List[AnimeSummary]:
    results = []
    for item in soup.select('.venz ul li'):
        title_tag = item.select_one('.jdlflm')
        link_tag = item.find('a')
        slug = parse_slug_from_link(link_tag.get('href') if link_tag else None, 'anime')
        title = title_tag.get_text(strip=True) if title_tag else ''
        if not title or not slug:
            logger.debug(f"Skipping list item without title or slug: {title!r}")
            continue

        def text_of(selector: str) -> str:
            tag = item.select_one(selector)
            return (tag.get_text(strip=True) if tag else '') or 'N/A'

        img = item.find('img')
        results.append(AnimeSummary(
            title=title,
            slug=slug,
            image=(img.get('src') or None) if img else None,
            link=build_url(api_base_url, f"/anime/{slug}"),
            episodes=text_of('.epz'),
            score=text_of('.epztipe'),
            date=text_of('.newnime'),
        ))
    return results


async def get_anime_list(path: str, client: AsyncClient, settings: Settings) -> List[AnimeSummary]:
    url = build_url(settings.source_url, f"/{path}/")
    soup = await fetch_page(url, client, settings)
    anime_list = parse_anime_list(soup, settings.base_url)
    logger.info(f"Scraped {len(anime_list)} anime from {path}")
    return anime_list


async def get_ongoing_anime(client: AsyncClient, settings: Settings) -> List[AnimeSummary]:
    return await get_anime_list(ONGOING_PATH, client, settings)


async def get_completed_anime(client: AsyncClient, settings: Settings) -> List[AnimeSummary]:
    return await get_anime_list(COMPLETED_PATH, client, settings)


def parse_search_results(soup: BeautifulSoup, api_base_url: str) -> List[SearchResult]:
    results = []
    for item in soup.select('ul.chivsrc > li'):
        link_tag = item.select_one('h2 a')
        slug = parse_slug_from_link(link_tag.get('href'), 'anime') if link_tag else None
        title = link_tag.get_text(strip=True) if link_tag else ''
        if not slug or not title:
            continue

        sets = item.select('.set')
        genres = [a.get_text(strip=True) for a in sets[0].find_all('a')] if sets else []
        status = sets[1].get_text().replace('Status :', '').strip() if len(sets) > 1 else ''
        rating = sets[2].get_text().replace('Rating :', '').strip() if len(sets) > 2 else ''
        img = item.find('img')

        results.append(SearchResult(
            title=title,
            slug=slug,
            link=build_url(api_base_url, f"/anime/{slug}"),
            image=(img.get('src') or None) if img else None,
            genres=genres,
            status=status or 'Unknown',
            rating=rating or 'N/A',
        ))
    return results


async def search_anime(query: str, client: AsyncClient, settings: Settings) -> List[SearchResult]:
    url = f"{settings.source_url.rstrip('/')}/?s={quote(query)}&post_type=anime"
    soup = await fetch_page(url, client, settings)
    results = parse_search_results(soup, settings.base_url)
    logger.info(f"Scraped {len(results)} anime for search term: {query}")
    return results


async def get_episode_streaming(slug: str, client: AsyncClient, settings: Settings) -> StreamingResult:
    url = build_url(settings.source_url, f"/episode/{slug}/")
    soup = await fetch_page(url, client, settings)
    try:
        streaming = await assemble_streaming(soup, slug, client, settings)
    except NotFoundError:
        logger.error(f"Episode page for '{slug}' has no title")
        raise
    logger.info(
        f"Scraped episode '{streaming.title}': {len(streaming.mirrors)} quality tiers, "
        f"{len(streaming.downloads)} download groups"
    )
    return streaming
