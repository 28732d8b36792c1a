"""
Manga source connectors for chapterdown
Connectors turn a site into publications, chapters and page image URLs. Site scraping
lives in the connector implementations; this module holds the capability they provide
and the helpers the download jobs build on.
"""

import logging
from typing import Dict, List, Optional, Protocol, runtime_checkable

from manga_models import Chapter, Publication
from chapter_dedup import DedupResolver

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@runtime_checkable
class MangaConnector(Protocol):
    """What chapterdown needs from a manga source"""

    name: str

    def list_chapters(self, publication: Publication) -> List[Chapter]:
        """All chapters of publication, ascending by volume/chapter, without duplicates"""
        ...

    def fetch_chapter_images(self, chapter: Chapter) -> List[str]:
        """Page image URLs of chapter, in reading order"""
        ...

    def fetch_publication_metadata(self, url_or_id: str) -> Optional[Publication]:
        ...


class ConnectorRegistry:
    """Manager class to handle multiple manga connectors"""

    def __init__(self, connectors: Optional[List[MangaConnector]] = None):
        self.connectors: Dict[str, MangaConnector] = {}
        for connector in connectors or []:
            self.register(connector)

    def register(self, connector: MangaConnector):
        self.connectors[connector.name] = connector

    def get_connector(self, name: str) -> Optional[MangaConnector]:
        """Get a specific connector by name"""
        return self.connectors.get(name)

    def get_all_connectors(self) -> Dict[str, MangaConnector]:
        return dict(self.connectors)


def get_new_chapters(connector: MangaConnector, publication: Publication,
                     resolver: DedupResolver) -> List[Chapter]:
    """
    Chapters of publication that still need downloading

    Skips chapters below publication.ignore_chapters_below and chapters the resolver
    already finds on disk. Also refreshes publication.latest_chapter_available.
    """
    logger.info(f"Getting new chapters for {publication}")
    all_chapters = connector.list_chapters(publication)
    if not all_chapters:
        return []

    new_chapters = [
        chapter for chapter in all_chapters
        if chapter.chapter_number >= publication.ignore_chapters_below
        and not resolver.is_downloaded(chapter)
    ]
    logger.info(f"{len(new_chapters)} new chapters. {publication}")

    try:
        publication.update_latest_available(all_chapters)
    except (TypeError, ValueError) as e:
        logger.error(f"Failed updating latest available chapter for {publication}: {e}")

    return sorted(new_chapters)
