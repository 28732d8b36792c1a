"""
Job persistence for chapterdown
The scheduler's job set is read from SQLite at start-up and written back at shutdown
"""

import os
import json
import sqlite3
import logging
from typing import Dict, Iterable, List, Optional

from manga_models import Publication
from manga_connectors import ConnectorRegistry
from download_jobs import Job

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class JobStore:
    """Stores job records in a single SQLite table"""

    def __init__(self, db_path='config/chapterdown.db'):
        self.db_path = db_path
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self.init_db()

    def get_connection(self):
        """Get database connection"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self):
        """Initialize database tables"""
        conn = self.get_connection()
        try:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    connector TEXT NOT NULL,
                    publication TEXT NOT NULL,
                    chapter TEXT,
                    last_execution TEXT,
                    recurrence_interval REAL,
                    parent_job_id TEXT,
                    saved_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')
            conn.commit()
        finally:
            conn.close()

    def export_jobs(self, jobs: Iterable[Job]) -> int:
        """Replace the stored job set with jobs; returns the number of rows written"""
        rows = []
        for job in jobs:
            record = job.to_record()
            rows.append((
                record['id'],
                record['kind'],
                record['connector'],
                json.dumps(record['publication'], ensure_ascii=False),
                json.dumps(record['chapter'], ensure_ascii=False) if record['chapter'] is not None else None,
                record['last_execution'],
                record['recurrence_interval'],
                record['parent_job_id'],
            ))

        conn = self.get_connection()
        try:
            with conn:
                conn.execute('DELETE FROM jobs')
                conn.executemany('''
                    INSERT OR REPLACE INTO jobs
                    (id, kind, connector, publication, chapter, last_execution, recurrence_interval, parent_job_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ''', rows)
        finally:
            conn.close()

        logger.info(f"Exported {len(rows)} jobs to {self.db_path}")
        return len(rows)

    def load_records(self) -> List[Dict]:
        conn = self.get_connection()
        try:
            cursor = conn.execute('SELECT * FROM jobs ORDER BY rowid')
            return [
                {
                    'id': row['id'],
                    'kind': row['kind'],
                    'connector': row['connector'],
                    'publication': json.loads(row['publication']),
                    'chapter': json.loads(row['chapter']) if row['chapter'] else None,
                    'last_execution': row['last_execution'],
                    'recurrence_interval': row['recurrence_interval'],
                    'parent_job_id': row['parent_job_id'],
                }
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def import_jobs(self, connectors: ConnectorRegistry,
                    catalog: Optional[Dict[str, Publication]] = None) -> List[Job]:
        """
        Rebuild the stored jobs

        Records that cannot be rebuilt (unknown connector, corrupt data) are skipped
        with a log message.
        """
        if catalog is None:
            catalog = {}
        jobs = []
        for record in self.load_records():
            try:
                job = Job.from_record(record, connectors, catalog)
            except (KeyError, ValueError, TypeError) as e:
                logger.error(f"Could not import job {record.get('id')}: {e}")
                continue
            if job is not None:
                jobs.append(job)
        logger.info(f"Imported {len(jobs)} jobs from {self.db_path}")
        return jobs
