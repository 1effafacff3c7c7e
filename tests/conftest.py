import asyncio
import base64
import json
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs

import httpx
import pytest

from config import load_settings

SOURCE_URL = "https://otakudesu.test"
NONCE = "f00dcafe42"


def encode_payload(params: dict) -> str:
    return base64.b64encode(json.dumps(params).encode("utf-8")).decode("ascii")


def iframe_fragment(url: str) -> str:
    html = f'<iframe src="{url}" allowfullscreen></iframe>'
    return base64.b64encode(html.encode("utf-8")).decode("ascii")


def episode_page(
    title: Optional[str] = "Kusuriya no Hitorigoto Episode 1 Subtitle Indonesia",
    tiers: Optional[Dict[str, List[Tuple[str, str]]]] = None,
    downloads: Optional[Dict[str, List[Tuple[str, str]]]] = None,
    iframe: Optional[str] = "https://desustream.test/dstream/default",
) -> str:
    tiers = tiers or {}
    downloads = downloads or {}
    tabs = "".join(f'<li><a href="#m{q}">{q}</a></li>' for q in tiers)
    blocks = "".join(
        f'<div id="m{q}"><ul>'
        + "".join(f'<li><a href="#" data-content="{content}">{label}</a></li>' for label, content in mirrors)
        + "</ul></div>"
        for q, mirrors in tiers.items()
    )
    download_rows = "".join(
        f"<li><strong>{q}</strong>"
        + "".join(f'<a href="{url}">{provider}</a>' for provider, url in links)
        + "<i>35 MB</i></li>"
        for q, links in downloads.items()
    )
    heading = f"<h1>{title}</h1>" if title else ""
    player = f'<div class="player-embed"><iframe src="{iframe}"></iframe></div>' if iframe else ""
    return f"""
    <html><body>
    <div class="venutama">
      {heading}
      {player}
      <div class="mirrorstream"><ul class="tabs">{tabs}</ul>{blocks}</div>
      <div class="download"><ul>{download_rows}</ul></div>
    </div>
    </body></html>
    """


class FakeUpstream:
    """Stands in for the otakudesu site: static pages plus the admin-ajax endpoint."""

    def __init__(self, nonce: Optional[str] = NONCE):
        self.pages: Dict[str, Tuple[int, str]] = {}
        self.nonce = nonce
        self.nonce_status = 200
        self.mirrors: Dict[str, str] = {}
        self.requests: List[httpx.Request] = []
        self.ajax_calls: List[Dict[str, str]] = []
        self.page_hook: Optional[Callable[[httpx.Request], Optional[httpx.Response]]] = None

    def add_page(self, path: str, html: str, status: int = 200) -> None:
        self.pages[path.rstrip("/") or "/"] = (status, html)

    def add_mirror(self, mirror_id: str, url: Optional[str]) -> None:
        """Register what the resolve action answers for payload ``{"id": mirror_id}``."""
        self.mirrors[mirror_id] = url

    def count(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path.rstrip("/") == path.rstrip("/"))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/wp-admin/admin-ajax.php":
            return self._ajax(request)
        if self.page_hook is not None:
            hooked = self.page_hook(request)
            if hooked is not None:
                return hooked
        status, html = self.pages.get(request.url.path.rstrip("/") or "/", (404, "<h1>404</h1>"))
        return httpx.Response(status, text=html)

    def _ajax(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode("utf-8")).items()}
        self.ajax_calls.append(form)
        if form.get("action") == "aa1208d27f29ca340c92c66d1926f13f":
            if self.nonce_status != 200:
                return httpx.Response(self.nonce_status, json={})
            return httpx.Response(200, json={"data": self.nonce} if self.nonce else {})
        if form.get("action") == "2a3505c93b0035d3f455df82bf976b84":
            if form.get("nonce") != self.nonce:
                return httpx.Response(403, json={"data": False})
            url = self.mirrors.get(form.get("id"))
            if url is None:
                return httpx.Response(200, json={})
            return httpx.Response(200, json={"data": iframe_fragment(url)})
        return httpx.Response(400, text="0")


@pytest.fixture
def settings():
    return load_settings(
        source_url=SOURCE_URL,
        base_url="http://api.test",
        retry_delay=0,
        request_timeout=5,
    )


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def run(upstream):
    """Run ``fn(client)`` on a fresh event loop with the fake upstream behind the client."""
    def runner(fn):
        async def main():
            async with httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)) as client:
                return await fn(client)
        return asyncio.run(main())
    return runner


ANIME_PAGE = """
<html><body>
<div class="venser">
  <div class="fotoanime"><img src="https://img.test/kusuriya.jpg"></div>
  <div class="jdlrx"><h1>Kusuriya no Hitorigoto Sub Indo</h1></div>
  <div class="infozingle">
    <p><span><b>Judul</b>: Kusuriya no Hitorigoto</span></p>
    <p><span><b>Japanese</b>: 薬屋のひとりごと</span></p>
    <p><span><b>Skor</b>: 8.85</span></p>
    <p><span><b>Total Episode</b>: 24</span></p>
    <p><span><b>Genre</b>: <a href="/genres/drama/">Drama</a>, <a href="/genres/mystery/">Mystery</a></span></p>
    <p><span><b>Studio</b>: </span></p>
  </div>
  <div class="sinopc"><p>Maomao, a young woman trained in pharmacy...</p></div>
  <div class="episodelist">
    <ul>
      <li><span><a href="https://otakudesu.test/episode/ksr-episode-1-sub-indo/">Episode 1</a></span><span class="zeebr">22 Oct,23</span></li>
      <li><span><a href="https://otakudesu.test/episode/ksr-episode-2-sub-indo/">Episode 2</a></span><span class="zeebr">22 Oct,23</span></li>
      <li><span><a href="https://otakudesu.test/batch/ksr-batch/">Batch</a></span></li>
    </ul>
  </div>
</div>
<div id="recommend-anime-series">
  <div class="isi-anime">
    <img src="https://img.test/frieren.jpg">
    <span class="judul-anime"><a href="https://otakudesu.test/anime/frieren-sub-indo/">Sousou no Frieren</a></span>
  </div>
  <div class="isi-anime"><span class="judul-anime"><a href="/genres/x/">Not an anime</a></span></div>
</div>
</body></html>
"""

LIST_PAGE = """
<div class="venz"><ul>
  <li><div class="detpost">
    <div class="epz">Episode 12</div>
    <div class="epztipe">Sabtu</div>
    <div class="newnime">14 Des</div>
    <div class="thumb"><a href="https://otakudesu.test/anime/dandadan-sub-indo/">
      <div class="thumbz"><img src="https://img.test/dandadan.jpg"><h2 class="jdlflm">Dandadan</h2></div>
    </a></div>
  </div></li>
  <li><div class="detpost">
    <div class="thumb"><a href="https://otakudesu.test/anime/blue-box-sub-indo/">
      <div class="thumbz"><h2 class="jdlflm">Ao no Hako</h2></div>
    </a></div>
  </div></li>
  <li><div class="detpost"><div class="thumb"><a href="/genres/x/"><h2 class="jdlflm">Broken</h2></a></div></div></li>
</ul></div>
"""

SEARCH_PAGE = """
<ul class="chivsrc">
  <li>
    <img src="https://img.test/naruto.jpg">
    <h2><a href="https://otakudesu.test/anime/naruto-shippuden-sub-indo/">Naruto Shippuden (Episode 1 – 500) Subtitle Indonesia</a></h2>
    <div class="set"><b>Genres</b> : <a href="/genres/action/">Action</a>, <a href="/genres/adventure/">Adventure</a></div>
    <div class="set"><b>Status</b> : Completed</div>
    <div class="set"><b>Rating</b> : 8.24</div>
  </li>
  <li><h2><a href="https://otakudesu.test/anime/boruto-sub-indo/">Boruto</a></h2></li>
</ul>
"""


