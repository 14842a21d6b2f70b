"""
Target Discovery

Finds candidate practices near a postcode by reading the public search
results pages. The search endpoint's URL shape has changed over time, so a
few template variants are tried in order until one yields results.
Discovery is advisory: it seeds the targets table and never updates status.
"""

import re
import logging
from dataclasses import dataclass
from urllib.parse import quote, urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from monitoring.errors import FetchError, ParseError
from utils.text import clean_text, html_to_text, postcode_path_segment, to_slug

logger = logging.getLogger(__name__)

TARGET_CODE_PATTERN = re.compile(r"\bV\d{6}\b", re.IGNORECASE)
DETAIL_PATH_MARKER = "/services/dentist"

# Path segments that hang off a practice's base page
SUBPAGE_SEGMENTS = {
    "appointments",
    "appointments-and-opening-times",
    "opening-times",
    "patients-and-appointments",
    "about-our-services",
    "registration",
    "who-we-can-accept",
}


@dataclass(frozen=True)
class CandidateRef:
    id: str
    url: str
    name: str = ""


def normalize_target_code(code):
    return str(code or "").strip().upper()


def canonical_target_url(url):
    """
    Strip query, fragment, trailing slash and any status sub-page from a
    practice URL, leaving the base page.

    Example:
        ".../services/dentist/smile-dental/V123456/appointments#x"
        -> ".../services/dentist/smile-dental/V123456"
    """
    parts = urlsplit(url)
    segments = [s for s in parts.path.split("/") if s]
    while segments and segments[-1].lower() in SUBPAGE_SEGMENTS:
        segments.pop()
    path = "/" + "/".join(segments) if segments else ""
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


def build_target_url(base_url, code, name=""):
    slug = to_slug(name)
    if slug:
        return f"{base_url}/services/dentist/{slug}/{quote(code)}"
    return f"{base_url}/services/dentist/{quote(code)}"


class TargetDiscovery:
    """
    Turns a (postcode, radius) pair into a de-duplicated list of candidates.
    """

    def __init__(self, fetcher, base_url="https://www.nhs.uk", max_pages=12):
        self.fetcher = fetcher
        self.base_url = base_url.rstrip("/")
        self.max_pages = max(1, max_pages)

    def search_url_variants(self, location_hint, radius):
        encoded = quote(str(location_hint or "").strip())
        search = f"{self.base_url}/service-search/find-a-dentist/results"
        return [
            f"{search}/{quote(postcode_path_segment(location_hint))}?distance={radius}",
            f"{search}/{encoded}&distance={radius}",
            f"{search}?postcode={encoded}&distance={radius}",
        ]

    def discover(self, location_hint, radius):
        """
        Discover candidate targets for a location.

        Never raises: failed search pages are logged and skipped, and total
        failure yields an empty list.

        Args:
            location_hint (str): Postcode to search around
            radius (int): Search radius in miles

        Returns:
            list: CandidateRef items, unique by id
        """
        for variant in self.search_url_variants(location_hint, radius):
            found = self._walk_results(variant)
            if found:
                logger.info(f"[DISCOVERY] {location_hint} ({radius} miles): {len(found)} candidates via {variant}")
                return list(found.values())
            logger.warning(f"[DISCOVERY] No usable results from {variant}")

        logger.warning(f"[DISCOVERY] No candidates found for {location_hint} ({radius} miles)")
        return []

    def _walk_results(self, start_url):
        found = {}
        seen = set()
        url = start_url

        while url and url not in seen and len(seen) < self.max_pages:
            seen.add(url)
            try:
                html, final_url = self.fetcher.fetch(url)
                soup = self._parse(html)
            except (FetchError, ParseError) as e:
                logger.warning(f"[DISCOVERY] Skipping {url}: {e}")
                break

            for candidate in self.extract_candidates(soup, final_url):
                existing = found.get(candidate.id)
                if existing is None or (candidate.name and not existing.name):
                    found[candidate.id] = candidate

            url = self.next_page_url(soup, final_url)

        return found

    @staticmethod
    def _parse(html):
        if not html or not html.strip():
            raise ParseError("Empty search results page")
        return BeautifulSoup(html, "html.parser")

    def extract_candidates(self, soup, page_url):
        """
        Pull practice references out of a results page.

        Links to practice pages are read first (they carry the name and the
        real URL). Codes that only appear in the page text get a URL built
        from the code.
        """
        candidates = {}

        for link in soup.find_all("a", href=True):
            href = link["href"]
            if DETAIL_PATH_MARKER not in href:
                continue
            url = canonical_target_url(urljoin(page_url, href))
            match = TARGET_CODE_PATTERN.search(urlsplit(url).path)
            if not match:
                continue
            code = normalize_target_code(match.group(0))
            name = clean_text(link.get_text(" "))
            if code not in candidates or (name and not candidates[code].name):
                candidates[code] = CandidateRef(id=code, url=url, name=name)

        for match in TARGET_CODE_PATTERN.finditer(html_to_text(str(soup))):
            code = normalize_target_code(match.group(0))
            if code not in candidates:
                candidates[code] = CandidateRef(id=code, url=build_target_url(self.base_url, code))

        return list(candidates.values())

    @staticmethod
    def next_page_url(soup, page_url):
        link = soup.find("a", rel="next") or soup.find("link", rel="next")
        if link is None:
            link = soup.find("a", attrs={"aria-label": re.compile("next", re.IGNORECASE)})
        if link is None:
            link = soup.find("a", string=re.compile(r"^\s*Next\b", re.IGNORECASE))
        if link is None or not link.get("href"):
            return None
        return urljoin(page_url, link["href"])
