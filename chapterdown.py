#!/usr/bin/env python3
"""
chapterdown - chapter download service
Keeps publications in sync with their sources and archives every chapter exactly once.
Exposes a small JSON API for job status, progress and cancellation.
"""

import os
import logging
from datetime import timedelta
from typing import List, Optional

from flask import Flask, jsonify, request

from settings import Settings
from chapter_archive import ArchiveAssembler, ChapterLocks, SeriesInfoWriter
from chapter_dedup import DedupResolver
from download_client import HttpDownloadClient
from download_jobs import JobContext, UpdatePublicationJob
from image_fetch import ImageFetchPipeline
from job_scheduler import JobScheduler
from job_store import JobStore
from manga_connectors import ConnectorRegistry, MangaConnector
from notifications import NotificationManager, NtfyNotifier

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_context(settings: Settings, transport, notifier=None) -> JobContext:
    """Wire the download pipeline for one download location"""
    resolver = DedupResolver(settings.download_location)
    fetcher = ImageFetchPipeline(
        transport,
        notifier=notifier,
        max_attempts=settings.max_image_attempts,
        min_valid_size=settings.min_image_size,
        retry_delay=settings.retry_delay,
    )
    assembler = ArchiveAssembler(settings.download_location, fetcher, resolver, ChapterLocks())
    return JobContext(
        download_location=settings.download_location,
        resolver=resolver,
        assembler=assembler,
        series_writer=SeriesInfoWriter(settings.download_location),
        notifier=notifier,
    )


def build_notifier(settings: Settings) -> NotificationManager:
    manager = NotificationManager()
    if settings.ntfy_endpoint:
        manager.add(NtfyNotifier(settings.ntfy_endpoint, settings.ntfy_topic,
                                 settings.ntfy_username, settings.ntfy_password))
    return manager


def create_app(scheduler: JobScheduler, connectors: Optional[ConnectorRegistry] = None) -> Flask:
    app = Flask(__name__)
    connectors = connectors or ConnectorRegistry()

    # ============================================================================
    # STATUS ROUTES
    # ============================================================================

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok', 'jobs': len(scheduler.get_jobs())})

    @app.route('/api/jobs', methods=['GET'])
    def list_jobs():
        return jsonify([job.as_dict() for job in scheduler.get_jobs()])

    @app.route('/api/jobs/<job_id>/progress', methods=['GET'])
    def job_progress(job_id):
        job = scheduler.get_job(job_id)
        if job is None:
            return jsonify({'error': 'Job not found'}), 404
        return jsonify(job.progress_token.as_dict())

    @app.route('/api/jobs/<job_id>', methods=['GET'])
    def get_job(job_id):
        job = scheduler.get_job(job_id)
        if job is None:
            return jsonify({'error': 'Job not found'}), 404
        return jsonify(job.as_dict())

    @app.route('/api/jobs/<job_id>', methods=['DELETE'])
    def cancel_job(job_id):
        if not scheduler.cancel_job(job_id):
            return jsonify({'error': 'Job not found'}), 404
        return jsonify({'id': job_id, 'state': 'cancelled'})

    # ============================================================================
    # PUBLICATION ROUTES
    # ============================================================================

    @app.route('/api/publications', methods=['POST'])
    def add_publication():
        """Start tracking a publication: {connector, url, interval_minutes?}"""
        data = request.get_json(silent=True) or {}
        connector = connectors.get_connector(data.get('connector', ''))
        if connector is None:
            return jsonify({'error': 'Unknown connector'}), 400
        if not data.get('url'):
            return jsonify({'error': 'url is required'}), 400

        try:
            interval = float(data.get('interval_minutes', 60))
        except (TypeError, ValueError):
            return jsonify({'error': 'interval_minutes must be a number'}), 400

        ignore_below = data.get('ignore_chapters_below')
        if ignore_below is not None:
            try:
                ignore_below = float(ignore_below)
            except (TypeError, ValueError):
                return jsonify({'error': 'ignore_chapters_below must be a number'}), 400

        publication = connector.fetch_publication_metadata(data['url'])
        if publication is None:
            return jsonify({'error': 'Publication not found'}), 404

        if ignore_below is not None:
            publication.ignore_chapters_below = ignore_below

        job = UpdatePublicationJob(connector, publication, recurrence_interval=timedelta(minutes=interval))
        if not scheduler.add_job(job):
            return jsonify({'error': 'Publication already tracked', 'id': job.id}), 409
        return jsonify(job.as_dict()), 201

    return app


def main(connectors: Optional[List[MangaConnector]] = None):
    settings = Settings.from_env()
    os.makedirs(settings.download_location, exist_ok=True)

    registry = ConnectorRegistry(connectors)
    notifier = build_notifier(settings)
    transport = HttpDownloadClient(request_delay=settings.request_delay).start()
    context = build_context(settings, transport, notifier)
    scheduler = JobScheduler(context, JobStore(settings.db_path), tick_interval=settings.tick_interval)
    scheduler.load(registry)
    scheduler.start()

    app = create_app(scheduler, registry)
    print(f"Starting chapterdown ({'Development' if settings.debug else 'Production'}) on http://localhost:{settings.port}")
    print(f"Downloading to {settings.download_location}")
    try:
        app.run(host='0.0.0.0', port=settings.port, debug=settings.debug, use_reloader=False)
    finally:
        scheduler.shutdown(timeout=10)
        transport.stop()


if __name__ == '__main__':
    main()
