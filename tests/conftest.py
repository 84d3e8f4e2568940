import asyncio

import pytest
from google.api_core import exceptions as api_exceptions

from lecture_pipeline.capabilities import RecognitionResult
from lecture_pipeline.config import PipelineConfig
from lecture_pipeline.database import FileRecordRepository
from lecture_pipeline.errors import StorageError
from lecture_pipeline.storage import GcsBlobStore
from lecture_pipeline.tasks import UploadOrchestrator
from lecture_pipeline.transcription import TranscriptionEngine


class FakeBlob:
    def __init__(self, bucket, name):
        self.bucket = bucket
        self.name = name
        self.cache_control = None
        self.content_type = None

    @property
    def public_url(self):
        return f"https://storage.googleapis.com/{self.bucket.name}/{self.name}"

    def upload_from_string(self, data, content_type=None, if_generation_match=None):
        if self.bucket.upload_error:
            raise self.bucket.upload_error
        if if_generation_match == 0 and self.name in self.bucket.objects:
            raise api_exceptions.PreconditionFailed("exists")
        self.content_type = content_type
        self.bucket.objects[self.name] = data

    def download_as_bytes(self):
        if self.name not in self.bucket.objects:
            raise api_exceptions.NotFound("missing")
        return self.bucket.objects[self.name]

    def delete(self):
        self.bucket.delete_calls += 1
        if self.bucket.delete_errors:
            raise self.bucket.delete_errors.pop(0)
        if self.name not in self.bucket.objects:
            raise api_exceptions.NotFound("missing")
        del self.bucket.objects[self.name]

    def exists(self):
        return self.name in self.bucket.objects


class FakeBucket:
    def __init__(self, name):
        self.name = name
        self.objects = {}
        self.upload_error = None
        self.delete_errors = []
        self.delete_calls = 0

    def blob(self, name):
        return FakeBlob(self, name)


class FakeClient:
    def __init__(self):
        self.buckets = {}

    def bucket(self, name):
        return self.buckets.setdefault(name, FakeBucket(name))


class RecordingStore:
    """Blob store that records every call."""

    def __init__(self):
        self.objects = {}
        self.calls = []
        self.fail_put = False
        self.fail_delete = False

    def put(self, key, data, content_type=None):
        self.calls.append(("put", key))
        if self.fail_put:
            raise StorageError("Upload failed: boom", step="uploading")
        self.objects[key] = data

    def get(self, key):
        self.calls.append(("get", key))
        if key not in self.objects:
            raise StorageError(f"Download failed: {key}", step="downloading")
        return self.objects[key]

    def delete(self, key):
        self.calls.append(("delete", key))
        if self.fail_delete:
            raise StorageError("Delete failed: boom", step="deleting")
        self.objects.pop(key, None)

    def exists(self, key):
        return key in self.objects

    def public_url(self, key):
        return f"https://cdn.example/{key}"


class FakeRemote:
    def __init__(self, text="remote transcript text", error=None):
        self.text = text
        self.error = error
        self.calls = []

    async def transcribe(self, audio, mime_type, file_name):
        self.calls.append(file_name)
        if self.error:
            raise self.error
        return self.text


class FakeSession:
    def __init__(self, events):
        self.events = events
        self.on_result = None
        self.on_end = None
        self.on_error = None

    def start(self):
        self.events.append("start")

    def stop(self):
        self.events.append("stop")
        if self.on_end:
            self.on_end()


class FakeSpeech:
    """Scripted recogniser.  ``results`` are delivered while the audio plays."""

    def __init__(self, available=True, results=(), error=None, trailing=()):
        self.available = available
        self.results = list(results)
        self.error = error
        self.trailing = list(trailing)
        self.events = []
        self.session = None
        self.session_options = None

    def is_available(self):
        return self.available

    def create_session(self, *, language, continuous, interim_results):
        self.session_options = dict(language=language, continuous=continuous, interim_results=interim_results)
        self.session = FakeSession(self.events)
        return self.session


class FakeElement:
    def __init__(self, speech, fail_load=False, never_ends=False):
        self.speech = speech
        self.fail_load = fail_load
        self.never_ends = never_ends
        self.volume = 1.0
        self.on_loaded = None
        self.on_ended = None
        self.on_error = None
        self.closed = False

    @property
    def duration(self):
        return 3.0

    def load(self):
        self.speech.events.append("load")
        if self.fail_load:
            self.on_error()
        else:
            self.on_loaded()

    def play(self):
        speech = self.speech
        speech.events.append("play")
        session = speech.session
        session.on_result([RecognitionResult("ignored", is_final=False)])
        session.on_result([RecognitionResult(text) for text in speech.results])
        if speech.error:
            session.on_error(speech.error)
            return
        if self.never_ends:
            return
        speech.events.append("ended")
        self.on_ended()
        if speech.trailing:
            loop = asyncio.get_running_loop()
            loop.call_later(
                0.01, session.on_result, [RecognitionResult(text) for text in speech.trailing]
            )

    def close(self):
        self.closed = True


class FakePlayback:
    def __init__(self, speech, **element_options):
        self.speech = speech
        self.element_options = element_options
        self.elements = []

    def open(self, data, mime_type):
        element = FakeElement(self.speech, **self.element_options)
        self.elements.append(element)
        return element


@pytest.fixture
def config():
    return PipelineConfig(settle_delay=0.05, remote_latency=0, recognition_timeout=5)


@pytest.fixture
def gcs_client():
    return FakeClient()


@pytest.fixture
def gcs_store(gcs_client, config):
    return GcsBlobStore(config.bucket_name, client=gcs_client)


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def repository():
    return FileRecordRepository.from_url("sqlite://")


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def engine(config, remote):
    return TranscriptionEngine(config, remote)


class FakeProbe:
    def __init__(self, seconds=42, error=None):
        self.seconds = seconds
        self.error = error
        self.calls = 0

    async def probe(self, data, mime_type):
        self.calls += 1
        if self.error:
            raise self.error
        return self.seconds


@pytest.fixture
def probe():
    return FakeProbe()


@pytest.fixture
def orchestrator(config, store, repository, engine, probe):
    return UploadOrchestrator(
        config, store, repository, engine, probe=probe, clock=lambda: 1700000000.123
    )
