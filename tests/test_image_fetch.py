import pytest

from download_client import RequestResult
from image_fetch import ImageFetchPipeline

from conftest import FakeTransport, RecordingNotifier

URL = 'https://img.test/page/1.png'


def make_pipeline(responses, max_attempts=5, default=None):
    transport = FakeTransport({URL: list(responses)}, default=default)
    notifier = RecordingNotifier()
    pipeline = ImageFetchPipeline(transport, notifier=notifier, max_attempts=max_attempts,
                                  min_valid_size=1024, retry_delay=0)
    return pipeline, transport, notifier


def test_success_first_attempt(tmp_path):
    pipeline, transport, notifier = make_pipeline([RequestResult(200, b'x' * 2048)])
    destination = tmp_path / '0001.png'

    assert pipeline.fetch_one(URL, str(destination)) == 200
    assert destination.stat().st_size == 2048
    assert len(transport.calls) == 1
    assert notifier.messages == []


def test_zero_byte_exhausts_attempts(tmp_path):
    empty = RequestResult(200, b'')
    pipeline, transport, notifier = make_pipeline([], default=empty)
    destination = tmp_path / '0001.png'

    assert pipeline.fetch_one(URL, str(destination)) == 502
    assert len(transport.calls) == 5
    assert not destination.exists()
    assert len(notifier.failures) == 1
    assert 'Download Failed' == notifier.failures[0][0]


def test_undersized_retried_then_accepted_on_final_attempt(tmp_path):
    small = RequestResult(200, b'x' * 500)
    pipeline, transport, notifier = make_pipeline([], default=small)
    destination = tmp_path / '0001.png'

    assert pipeline.fetch_one(URL, str(destination)) == 200
    assert len(transport.calls) == 5
    assert destination.stat().st_size == 500
    assert [m[0] for m in notifier.messages] == ['Download Warning']


def test_undersized_recovers_on_retry(tmp_path):
    pipeline, transport, notifier = make_pipeline([RequestResult(200, b'x' * 500), RequestResult(200, b'x' * 4096)])
    destination = tmp_path / '0001.png'

    assert pipeline.fetch_one(URL, str(destination)) == 200
    assert len(transport.calls) == 2
    assert destination.stat().st_size == 4096
    assert notifier.messages == []


def test_http_error_returns_last_status(tmp_path):
    pipeline, transport, notifier = make_pipeline([], default=RequestResult(403, None))

    assert pipeline.fetch_one(URL, str(tmp_path / '0001.png')) == 403
    assert len(transport.calls) == 5
    assert len(notifier.failures) == 1


def test_missing_body_is_not_found(tmp_path):
    pipeline, transport, notifier = make_pipeline([], default=RequestResult(200, None))

    assert pipeline.fetch_one(URL, str(tmp_path / '0001.png')) == 404
    assert len(transport.calls) == 5


def test_transient_error_then_success(tmp_path):
    pipeline, transport, notifier = make_pipeline([RequestResult(408, None), RequestResult(200, b'x' * 2048)])

    assert pipeline.fetch_one(URL, str(tmp_path / '0001.png')) == 200
    assert len(transport.calls) == 2
    assert notifier.messages == []


def test_write_error_is_internal_error(tmp_path):
    pipeline, transport, notifier = make_pipeline([], max_attempts=2)

    status = pipeline.fetch_one(URL, str(tmp_path / 'missing-dir' / '0001.png'))

    assert status == 500
    assert len(notifier.failures) == 1


def test_referrer_is_forwarded(tmp_path):
    pipeline, transport, _ = make_pipeline([RequestResult(200, b'x' * 2048)])
    pipeline.fetch_one(URL, str(tmp_path / '0001.png'), referrer='https://example.test/ch/1')
    assert transport.calls == [(URL, 'https://example.test/ch/1')]


def test_max_attempts_validation():
    with pytest.raises(ValueError):
        ImageFetchPipeline(FakeTransport(), max_attempts=0)
