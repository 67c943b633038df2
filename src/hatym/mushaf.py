from __future__ import annotations

from typing import Optional
from urllib.parse import urlsplit

PAGE_PLACEHOLDER = "{page}"
PADDED_PAGE_PLACEHOLDER = "{page3}"


def resolve(stored_url: Optional[str], page_number: int) -> list[str]:
    """
    Candidate asset URLs for a page, best first. Pure; fetches nothing.

    - empty or non-http(s) values give no candidates
    - "{page}" is filled with the page number, unpadded and then zero-padded
      to three digits
    - "{page3}" is always zero-padded to three digits
    - any other http(s) URL is its own single candidate
    """
    if not stored_url:
        return []
    value = stored_url.strip()
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return []
    if PAGE_PLACEHOLDER not in value and PADDED_PAGE_PLACEHOLDER not in value:
        return [value]

    padded = f"{page_number:03d}"
    candidates: list[str] = []
    for rendered in (str(page_number), padded):
        url = value.replace(PADDED_PAGE_PLACEHOLDER, padded).replace(PAGE_PLACEHOLDER, rendered)
        if url not in candidates:
            candidates.append(url)
    return candidates
