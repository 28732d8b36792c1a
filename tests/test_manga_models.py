import os
import threading

import pytest

from manga_models import (
    Chapter,
    Publication,
    ReleaseStatus,
    clean_chapter_name,
    format_number,
    parse_number,
    sanitize_folder_name,
)


@pytest.mark.parametrize('value, expected', [
    (12.0, '12'),
    (75.5, '75.5'),
    (0.0, '0'),
    (3.25, '3.25'),
    (100.0, '100'),
])
def test_format_number(value, expected):
    assert format_number(value) == expected


def test_parse_number_uses_decimal_point():
    assert parse_number('75.5') == 75.5
    assert parse_number(' 12 ') == 12.0
    assert parse_number(None) == 0.0
    assert parse_number('') == 0.0
    with pytest.raises(ValueError):
        parse_number('75,5')


def test_file_name_with_name(chapter):
    assert chapter.file_name == 'Vol.0 Ch.12 - The Return'


def test_file_name_without_name(publication):
    chapter = Chapter(publication, None, 2, 7.5, 'u')
    assert chapter.file_name == 'Vol.2 Ch.7.5'


def test_file_name_drops_empty_cleaned_name(publication):
    chapter = Chapter(publication, 'Chapter', 1, 3, 'u')
    assert chapter.file_name == 'Vol.1 Ch.3'


def test_clean_chapter_name_strips_tokens_and_illegal_characters():
    assert clean_chapter_name('Vol.2 Ch.5: The <Big> Fight?') == '2 5 The Big Fight'
    assert clean_chapter_name('Volume 3 - [Side Story] (Part 1)!') == '3 - [Side Story] (Part 1)!'
    assert clean_chapter_name('') == ''
    assert clean_chapter_name(None) == ''


def test_sanitize_folder_name():
    assert sanitize_folder_name('Tom &amp; Jerry: Reloaded...') == 'Tom  Jerry Reloaded'
    assert sanitize_folder_name('Café del Mar') == 'Café del Mar'


def test_from_strings_parses_numbers(publication):
    chapter = Chapter.from_strings(publication, 'Extra', None, '75.5', 'u', 'id-1')
    assert chapter.volume_number == 0
    assert chapter.chapter_number == 75.5
    assert chapter.id == 'id-1'


def test_ordering_by_volume_then_chapter(publication):
    a = Chapter(publication, None, 1, 10, 'u')
    b = Chapter(publication, None, 1, 10.5, 'u')
    c = Chapter(publication, None, 1, 11, 'u')
    d = Chapter(publication, None, 2, 1, 'u')
    assert sorted([d, c, b, a]) == [a, b, c, d]
    assert a == Chapter(publication, 'other name', 1, 10, 'other-url')
    assert a != b


def test_archive_path(chapter, download_root):
    expected = os.path.join(str(download_root), 'Alpha', 'Alpha - Vol.0 Ch.12 - The Return.cbz')
    assert chapter.archive_path(str(download_root)) == expected


def test_update_latest_downloaded_is_monotonic(publication):
    publication.update_latest_downloaded(Chapter(publication, None, 0, 5, 'u'))
    publication.update_latest_downloaded(Chapter(publication, None, 0, 3, 'u'))
    assert publication.latest_chapter_downloaded == 5


def test_update_latest_available(publication):
    chapters = [Chapter(publication, None, 0, n, 'u') for n in (1, 9.5, 4)]
    assert publication.update_latest_available(chapters) == 9.5


def test_move_folder_renames_directory(publication, download_root):
    old_dir = download_root / 'Alpha'
    old_dir.mkdir()
    (old_dir / 'a.cbz').write_bytes(b'1')

    new_path = publication.move_folder(str(download_root), 'Alpha Reborn')

    assert publication.folder_name == 'Alpha Reborn'
    assert new_path == os.path.join(str(download_root), 'Alpha Reborn')
    assert (download_root / 'Alpha Reborn' / 'a.cbz').exists()
    assert not old_dir.exists()


def test_move_folder_merges_into_existing(publication, download_root):
    old_dir = download_root / 'Alpha'
    new_dir = download_root / 'Alpha Reborn'
    (old_dir / 'extras').mkdir(parents=True)
    new_dir.mkdir()
    (old_dir / 'extras' / 'cover.jpg').write_bytes(b'cover')
    (old_dir / 'b.cbz').write_bytes(b'old')
    (old_dir / 'notes.txt').write_bytes(b'old notes')
    (new_dir / 'notes.txt').write_bytes(b'new notes')

    publication.move_folder(str(download_root), 'Alpha Reborn')

    assert (new_dir / 'extras' / 'cover.jpg').read_bytes() == b'cover'
    assert (new_dir / 'b.cbz').read_bytes() == b'old'
    assert (new_dir / 'notes.txt').read_bytes() == b'new notes'
    # the colliding file is kept, so the old folder stays
    assert os.listdir(old_dir) == ['notes.txt']
    assert (old_dir / 'notes.txt').read_bytes() == b'old notes'
    assert publication.folder_name == 'Alpha Reborn'


def test_move_folder_removes_emptied_folder(publication, download_root):
    old_dir = download_root / 'Alpha'
    new_dir = download_root / 'Alpha Reborn'
    old_dir.mkdir()
    new_dir.mkdir()
    (old_dir / 'b.cbz').write_bytes(b'old')

    publication.move_folder(str(download_root), 'Alpha Reborn')

    assert (new_dir / 'b.cbz').exists()
    assert not old_dir.exists()


def test_publication_round_trip(publication):
    publication.release_status = ReleaseStatus.COMPLETED
    publication.latest_chapter_downloaded = 4
    restored = Publication.from_dict(publication.to_dict())
    assert restored.to_dict() == publication.to_dict()


def test_with_metadata_merges_authors_and_tags(publication):
    refreshed = Publication(sort_name='Alpha', publication_id='alpha-1', authors=['Jane Doe', 'Ann Other'],
                            tags=['Romance'], description='New', year=2020)
    publication.with_metadata(refreshed)
    assert publication.authors == ['Jane Doe', 'John Roe', 'Ann Other']
    assert publication.tags == ['Action', 'Drama', 'Romance']
    assert publication.description == 'New'
    assert publication.year == 2020


def test_concurrent_downloads_keep_highest_chapter(publication):
    chapters = [Chapter(publication, None, 0, n, 'u') for n in range(1, 201)]
    barrier = threading.Barrier(8)

    def finish(batch):
        barrier.wait()
        for chapter in batch:
            publication.update_latest_downloaded(chapter)

    threads = [threading.Thread(target=finish, args=(chapters[i::8],)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert publication.latest_chapter_downloaded == 200
