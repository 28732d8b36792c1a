"""
Jobs run by the chapterdown scheduler

DownloadChapterJob archives one chapter. UpdatePublicationJob looks for new chapters of
a publication and returns one DownloadChapterJob per chapter it finds.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Dict, List, Optional

from manga_models import Chapter, Publication, format_number
from chapter_archive import ArchiveAssembler, SeriesInfoWriter
from chapter_dedup import DedupResolver
from manga_connectors import ConnectorRegistry, MangaConnector, get_new_chapters
from progress_token import ProgressToken, CANCELLED_STATUS, is_success

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class JobKind(Enum):
    DOWNLOAD_CHAPTER = 'download_chapter'
    UPDATE_PUBLICATION = 'update_publication'


class JobState(Enum):
    SCHEDULED = 'scheduled'
    EXECUTING = 'executing'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


@dataclass
class JobContext:
    """Collaborators every job execution needs"""
    download_location: str
    resolver: DedupResolver
    assembler: ArchiveAssembler
    series_writer: SeriesInfoWriter
    notifier: Any = None

    def notify(self, title: str, body: str, is_success: bool = False):
        if self.notifier is not None:
            self.notifier.notify(title, body, is_success)


class Job:
    """
    A unit of scheduled work

    recurrence_interval of None (or zero) means the job runs once. A job that has
    never run is due immediately; a recurring job is due again recurrence_interval
    after its last execution.
    """

    kind: JobKind

    def __init__(self, connector: MangaConnector, last_execution: Optional[datetime] = None,
                 recurrence_interval: Optional[timedelta] = None, parent_job_id: Optional[str] = None):
        self.connector = connector
        self.last_execution = last_execution
        self.recurrence_interval = recurrence_interval if recurrence_interval else None
        self.parent_job_id = parent_job_id
        self.progress_token = ProgressToken()
        self.state = JobState.SCHEDULED
        self.status: Optional[int] = None

    @property
    def id(self) -> str:
        raise NotImplementedError

    @property
    def publication(self) -> Publication:
        raise NotImplementedError

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_interval is not None

    @property
    def next_execution(self) -> Optional[datetime]:
        """None while the job is due right away"""
        if self.last_execution is None or self.recurrence_interval is None:
            return None
        return self.last_execution + self.recurrence_interval

    def is_due(self, now: Optional[datetime] = None) -> bool:
        if self.state != JobState.SCHEDULED:
            return False
        # a scheduled one-off job has not finished yet (e.g. interrupted by a restart)
        if self.next_execution is None:
            return True
        return (now or datetime.now()) >= self.next_execution

    def reschedule(self):
        """Ready a finished recurring job for its next run"""
        self.progress_token = ProgressToken()
        self.state = JobState.SCHEDULED
        self.status = None

    def execute(self, context: JobContext) -> List['Job']:
        """Do the work. Returns follow-on jobs to add to the scheduler."""
        raise NotImplementedError

    def __eq__(self, other):
        if not isinstance(other, Job):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)

    def __repr__(self):
        return f"<{type(self).__name__} {self.id} {self.state.value}>"

    def to_record(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'kind': self.kind.value,
            'connector': self.connector.name,
            'publication': self.publication.to_dict(),
            'chapter': None,
            'last_execution': self.last_execution.isoformat() if self.last_execution else None,
            'recurrence_interval': self.recurrence_interval.total_seconds() if self.recurrence_interval else None,
            'parent_job_id': self.parent_job_id,
        }

    def as_dict(self) -> Dict[str, Any]:
        """Status view used by the API"""
        return {
            'id': self.id,
            'kind': self.kind.value,
            'state': self.state.value,
            'status': int(self.status) if self.status is not None else None,
            'publication': self.publication.sort_name,
            'parent_job_id': self.parent_job_id,
            'last_execution': self.last_execution.isoformat() if self.last_execution else None,
            'next_execution': self.next_execution.isoformat() if self.next_execution else None,
            'progress': self.progress_token.as_dict(),
        }

    @staticmethod
    def from_record(record: Dict[str, Any], connectors: ConnectorRegistry,
                    catalog: Dict[str, Publication]) -> Optional['Job']:
        """
        Rebuild a job from its persisted record

        catalog maps internal ids to publications already loaded, so jobs for the same
        series share one Publication. Returns None when the connector is unknown.
        """
        connector = connectors.get_connector(record['connector'])
        if connector is None:
            logger.warning(f"Skipping job {record.get('id')}: unknown connector {record['connector']!r}")
            return None

        publication_data = record['publication']
        publication = catalog.get(publication_data.get('internal_id'))
        if publication is None:
            publication = Publication.from_dict(publication_data)
            catalog[publication.internal_id] = publication

        last_execution = record.get('last_execution')
        last_execution = datetime.fromisoformat(last_execution) if last_execution else None
        interval = record.get('recurrence_interval')
        interval = timedelta(seconds=float(interval)) if interval else None

        kind = JobKind(record['kind'])
        if kind == JobKind.DOWNLOAD_CHAPTER:
            chapter = Chapter.from_dict(publication, record['chapter'])
            return DownloadChapterJob(connector, chapter, last_execution=last_execution,
                                      recurrence_interval=interval, parent_job_id=record.get('parent_job_id'))
        return UpdatePublicationJob(connector, publication, recurrence_interval=interval,
                                    last_execution=last_execution, parent_job_id=record.get('parent_job_id'))


class DownloadChapterJob(Job):
    kind = JobKind.DOWNLOAD_CHAPTER

    def __init__(self, connector: MangaConnector, chapter: Chapter, last_execution: Optional[datetime] = None,
                 recurrence_interval: Optional[timedelta] = None, parent_job_id: Optional[str] = None):
        super().__init__(connector, last_execution, recurrence_interval, parent_job_id)
        self.chapter = chapter

    @property
    def id(self) -> str:
        chapter = self.chapter
        return (f"DownloadChapterJob-{chapter.parent_publication.internal_id}"
                f"-{chapter.formatted_volume_number}-{chapter.formatted_chapter_number}")

    @property
    def publication(self) -> Publication:
        return self.chapter.parent_publication

    def __str__(self):
        return f"{self.id} Chapter: {self.chapter}"

    def to_record(self) -> Dict[str, Any]:
        record = super().to_record()
        record['chapter'] = self.chapter.to_dict()
        return record

    def as_dict(self) -> Dict[str, Any]:
        data = super().as_dict()
        data['chapter'] = self.chapter.file_name
        return data

    def execute(self, context: JobContext) -> List[Job]:
        chapter = self.chapter
        token = self.progress_token
        try:
            if context.resolver.is_downloaded(chapter):
                logger.info(f"Chapter {chapter} is already downloaded. Skipping download.")
                self.status = HTTPStatus.CREATED
            else:
                image_urls = self.connector.fetch_chapter_images(chapter)
                self.status = context.assembler.assemble(chapter, image_urls, referrer=chapter.url,
                                                         progress_token=token)
        except Exception as e:
            logger.error(f"Download of {chapter} failed: {e}", exc_info=True)
            self.status = HTTPStatus.INTERNAL_SERVER_ERROR
            context.notify("Chapter download failed", f"{chapter.parent_publication.sort_name} - "
                                                      f"{chapter.file_name}\nError: {e}")
            return []
        finally:
            token.complete()

        publication = chapter.parent_publication
        if self.status in (HTTPStatus.OK, HTTPStatus.CREATED):
            publication.update_latest_downloaded(chapter)
            if self.status == HTTPStatus.OK:
                context.notify("Chapter downloaded",
                               f"{publication.sort_name} - {chapter.formatted_chapter_number}", True)
        elif self.status == HTTPStatus.NO_CONTENT:
            logger.warning(f"No content available for {chapter}")
        elif self.status == CANCELLED_STATUS:
            logger.info(f"Download of {chapter} cancelled")
        elif not is_success(self.status):
            context.notify("Chapter download failed",
                           f"{publication.sort_name} - {chapter.file_name}\nStatus: {int(self.status)}")
        return []


class UpdatePublicationJob(Job):
    """Scans a publication for chapters that are not downloaded yet"""

    kind = JobKind.UPDATE_PUBLICATION

    def __init__(self, connector: MangaConnector, publication: Publication,
                 recurrence_interval: Optional[timedelta] = None, last_execution: Optional[datetime] = None,
                 parent_job_id: Optional[str] = None):
        super().__init__(connector, last_execution, recurrence_interval, parent_job_id)
        self._publication = publication

    @property
    def id(self) -> str:
        return f"UpdatePublicationJob-{self._publication.internal_id}"

    @property
    def publication(self) -> Publication:
        return self._publication

    def __str__(self):
        return f"{self.id} {self._publication}"

    def execute(self, context: JobContext) -> List[Job]:
        publication = self._publication
        try:
            context.series_writer.write(publication)
            new_chapters = get_new_chapters(self.connector, publication, context.resolver)
        finally:
            self.progress_token.complete()

        if self.progress_token.cancellation_requested:
            logger.info(f"{self}: cancelled, not queueing {len(new_chapters)} chapters")
            self.status = CANCELLED_STATUS
            return []

        self.status = HTTPStatus.OK
        jobs = [DownloadChapterJob(self.connector, chapter, parent_job_id=self.id) for chapter in new_chapters]
        logger.info(f"{self}: queued {len(jobs)} chapter downloads")
        return jobs


def format_job_label(job: Job) -> str:
    if isinstance(job, DownloadChapterJob):
        return f"{job.publication.sort_name} Ch.{format_number(job.chapter.chapter_number)}"
    return job.publication.sort_name
