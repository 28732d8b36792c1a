import os

import pytest

from chapter_dedup import (
    DedupResolver,
    lenient_pattern_match,
    names_related,
    strict_number_match,
)
from chapter_markers import MarkerStore
from manga_models import Chapter

from conftest import make_archive


def test_missing_publication_directory(resolver, chapter):
    assert resolver.find_archive(chapter) is None
    assert not resolver.is_downloaded(chapter)


def test_direct_path(resolver, chapter, download_root):
    path = make_archive(download_root / 'Alpha', 'Alpha - Vol.0 Ch.12 - The Return.cbz')
    assert resolver.find_archive(chapter) == str(path)


def test_marker_points_at_renamed_archive(resolver, chapter, download_root):
    renamed = make_archive(download_root / 'Alpha', 'my own name.cbz')
    MarkerStore(str(download_root / 'Alpha')).write(chapter.id, str(renamed))

    assert resolver.find_archive(chapter) == str(renamed)


def test_stale_marker_removed_and_scan_continues(resolver, chapter, download_root):
    directory = download_root / 'Alpha'
    directory.mkdir()
    MarkerStore(str(directory)).write(chapter.id, str(directory / 'deleted.cbz'))

    assert resolver.find_archive(chapter) is None
    assert not (directory / '.ch-12').exists()


def test_strict_scan_finds_renamed_series(resolver, chapter, download_root):
    path = make_archive(download_root / 'Alpha', 'Old Title - Vol.0 Ch.12 - Something Else.cbz')
    assert resolver.find_archive(chapter) == str(path)


def test_lenient_scan_matches_truncated_name(resolver, publication, download_root):
    chapter = Chapter(publication, 'The Return of the King', 1, 12, 'u')
    path = make_archive(download_root / 'Alpha', 'Alpha Volume.1 - Chapter.12 - The Return.cbz')
    assert resolver.find_archive(chapter) == str(path)


def test_find_archive_is_idempotent(resolver, chapter, download_root):
    make_archive(download_root / 'Alpha', 'Old Title - Vol.0 Ch.12.cbz')
    before = sorted(os.listdir(download_root / 'Alpha'))

    first = resolver.find_archive(chapter)
    second = resolver.find_archive(chapter)

    assert first == second
    assert sorted(os.listdir(download_root / 'Alpha')) == before


@pytest.mark.parametrize('stem, volume, number, expected', [
    ('Alpha - Vol.0 Ch.2 - Name', '0', '2', True),
    ('Alpha - Vol.0 Ch.2', '0', '2', True),
    ('Alpha - Vol.0 Ch.2-extra', '0', '2', True),
    ('Alpha - Vol.0 Ch.2.3 - Name', '0', '2', False),
    ('Alpha - Vol.0 Ch.20', '0', '2', False),
    ('Alpha - Vol.0 Ch.2.3 - Name', '0', '2.3', True),
    ('Alpha - Vol.1 Ch.2', '0', '2', False),
])
def test_strict_number_match(stem, volume, number, expected):
    assert strict_number_match(stem, volume, number) is expected


def test_whole_and_fractional_chapters_do_not_collide(resolver, publication, download_root):
    c1 = Chapter(publication, None, 0, 1, 'u')
    c15 = Chapter(publication, None, 0, 1.5, 'u')
    make_archive(download_root / 'Alpha', 'Other - Vol.0 Ch.1.5.cbz')

    assert resolver.find_archive(c15) is not None
    assert resolver.find_archive(c1) is None


def test_names_related():
    assert names_related(None, '')
    assert names_related('The Return', 'The Return of the King')
    assert names_related('Return Home', 'Return Trip')
    assert not names_related(None, 'Something')
    assert not names_related('Other', 'Something')


def test_lenient_pattern(publication):
    chapter = Chapter(publication, None, 0, 4, 'u')
    assert lenient_pattern_match('Ch.4.cbz', chapter)
    assert lenient_pattern_match('Whatever Vol.0 Ch.4.0.cbz', chapter)
    assert not lenient_pattern_match('Ch.4.5.cbz', chapter)
    assert not lenient_pattern_match('Vol.1 Ch.4.cbz', chapter)
    assert not lenient_pattern_match('notes.txt', chapter)


def test_uppercase_extension_is_matched(resolver, publication, download_root):
    chapter = Chapter(publication, 'The Return of the King', 1, 12, 'u')
    path = make_archive(download_root / 'Alpha', 'Alpha Volume.1 - Chapter.12 - The Return.CBZ')

    assert lenient_pattern_match(path.name, chapter)
    assert resolver.find_archive(chapter) == str(path)
