import asyncio
import threading
from dataclasses import replace

import pytest

from conftest import FakePlayback, FakeRemote, FakeSession, FakeSpeech
from lecture_pipeline.errors import MediaLoadError, RecognitionError, TranscriptionFailed
from lecture_pipeline.transcription import TranscriptionEngine


def make_engine(config, speech, remote=None, **element_options):
    playback = FakePlayback(speech, **element_options)
    engine = TranscriptionEngine(config, remote or FakeRemote(), speech=speech, playback=playback)
    return engine, playback


def test_is_supported_follows_capability(config):
    assert TranscriptionEngine(config, FakeRemote()).is_supported() is False
    engine, _ = make_engine(config, FakeSpeech(available=True))
    assert engine.is_supported() is True


def test_local_transcription_joins_final_results(config):
    speech = FakeSpeech(results=['  good morning ', 'today we cover graphs'])
    engine, playback = make_engine(config, speech)

    text = asyncio.run(engine.transcribe_local(b'audio', 'audio/webm'))

    assert text == 'good morning today we cover graphs'
    assert speech.session_options == {'language': 'en-US', 'continuous': True, 'interim_results': False}
    assert speech.events == ['load', 'start', 'play', 'ended', 'stop']
    element = playback.elements[0]
    assert element.volume == 0.5
    assert element.closed


def test_local_transcription_keeps_results_arriving_during_settle_delay(config):
    speech = FakeSpeech(results=['first part'], trailing=['last words'])
    engine, _ = make_engine(config, speech)

    assert asyncio.run(engine.transcribe_local(b'audio', 'audio/webm')) == 'first part last words'


def test_local_transcription_recognizer_error(config):
    speech = FakeSpeech(results=['partial'], error='network')
    engine, playback = make_engine(config, speech)

    with pytest.raises(RecognitionError) as info:
        asyncio.run(engine.transcribe_local(b'audio', 'audio/webm'))

    assert info.value.code == 'network'
    assert speech.events[-1] == 'stop'
    assert playback.elements[0].closed


def test_local_transcription_media_error_never_starts_recognizer(config):
    speech = FakeSpeech(results=['unused'])
    engine, playback = make_engine(config, speech, fail_load=True)

    with pytest.raises(MediaLoadError):
        asyncio.run(engine.transcribe_local(b'audio', 'audio/webm'))

    assert 'start' not in speech.events
    assert playback.elements[0].closed


def test_local_transcription_requires_support(config):
    engine, _ = make_engine(config, FakeSpeech(available=False))
    with pytest.raises(RecognitionError) as info:
        asyncio.run(engine.transcribe_local(b'audio', 'audio/webm'))
    assert info.value.code == 'not-supported'


def test_local_transcription_times_out(config):
    speech = FakeSpeech(results=['stuck'])
    engine, playback = make_engine(replace(config, recognition_timeout=0.1), speech, never_ends=True)

    with pytest.raises(RecognitionError) as info:
        asyncio.run(engine.transcribe_local(b'audio', 'audio/webm'))

    assert info.value.code == 'timeout'
    assert speech.events[-1] == 'stop'
    assert playback.elements[0].closed


def test_transcribe_uses_remote_when_unsupported(config):
    remote = FakeRemote(text='from the service')
    engine = TranscriptionEngine(config, remote)

    text = asyncio.run(engine.transcribe(b'audio', 'audio/webm', 'lecture.webm'))

    assert text == 'from the service'
    assert remote.calls == ['lecture.webm']


def test_transcribe_prefers_remote_when_asked(config):
    speech = FakeSpeech(results=['local text'])
    remote = FakeRemote(text='remote text')
    engine, _ = make_engine(config, speech, remote)

    text = asyncio.run(engine.transcribe(b'audio', 'audio/webm', 'a.webm', prefer_remote=True))

    assert text == 'remote text'
    assert speech.events == []


def test_transcribe_uses_local_when_supported(config):
    speech = FakeSpeech(results=['local text'])
    remote = FakeRemote()
    engine, _ = make_engine(config, speech, remote)

    assert asyncio.run(engine.transcribe(b'audio', 'audio/webm', 'a.webm')) == 'local text'
    assert remote.calls == []


def test_transcribe_falls_back_to_remote_once(config):
    speech = FakeSpeech(error='no-speech')
    remote = FakeRemote(text='fallback text')
    engine, _ = make_engine(config, speech, remote)

    assert asyncio.run(engine.transcribe(b'audio', 'audio/webm', 'a.webm')) == 'fallback text'
    assert remote.calls == ['a.webm']


def test_transcribe_wraps_last_error_when_both_fail(config):
    speech = FakeSpeech(error='aborted')
    cause = RecognitionError('UNAVAILABLE')
    remote = FakeRemote(error=cause)
    engine, _ = make_engine(config, speech, remote)

    with pytest.raises(TranscriptionFailed) as info:
        asyncio.run(engine.transcribe(b'audio', 'audio/webm', 'a.webm'))

    assert info.value.cause is cause
    assert remote.calls == ['a.webm']


def test_transcribe_remote_failure_is_not_retried(config):
    remote = FakeRemote(error=RuntimeError('service down'))
    engine = TranscriptionEngine(config, remote)

    with pytest.raises(TranscriptionFailed):
        asyncio.run(engine.transcribe(b'audio', 'audio/webm', 'a.webm'))

    assert remote.calls == ['a.webm']


class LateEndingSession(FakeSession):
    """Fires ``on_end`` from another thread some time after ``stop``."""

    def __init__(self, events, errors):
        super().__init__(events)
        self.errors = errors
        self.late = None

    def stop(self):
        self.events.append('stop')
        handler = self.on_end

        def fire():
            try:
                if handler:
                    handler()
                if self.on_end:
                    self.on_end()
            except Exception as exc:
                self.errors.append(exc)

        self.late = threading.Timer(0.2, fire)
        self.late.start()


def test_late_session_events_after_run_are_ignored(config):
    errors = []
    sessions = []
    speech = FakeSpeech(results=['done'])

    def create_session(**options):
        speech.session = LateEndingSession(speech.events, errors)
        sessions.append(speech.session)
        return speech.session

    speech.create_session = create_session
    engine, _ = make_engine(config, speech)

    assert asyncio.run(engine.transcribe_local(b'audio', 'audio/webm')) == 'done'

    sessions[0].late.join(timeout=1)
    assert errors == []
    assert sessions[0].on_end is None
