import pytest

from lecture_pipeline.config import MAX_FILE_SIZE, PipelineConfig
from lecture_pipeline.models import FileKind


def test_defaults():
    config = PipelineConfig.from_env({})
    assert config.max_file_size == MAX_FILE_SIZE == 100 * 1024 * 1024
    assert config.bucket_name == 'lecture-files'
    assert config.language_code == 'en-US'
    assert config.settle_delay == 1.0
    assert config.transcriber_backend == 'stub'
    assert 'audio/webm' in config.allowed_types[FileKind.AUDIO]


def test_overrides_from_environment():
    config = PipelineConfig.from_env(
        {
            'BUCKET_NAME': 'other',
            'SETTLE_DELAY': '0.25',
            'RECOGNITION_TIMEOUT': '',
            'TRANSCRIBER_BACKEND': 'Google',
            'MAX_FILE_SIZE': '1024',
        }
    )
    assert config.bucket_name == 'other'
    assert config.settle_delay == 0.25
    assert config.recognition_timeout is None
    assert config.transcriber_backend == 'google'
    assert config.max_file_size == 1024


def test_reads_os_environ(monkeypatch):
    monkeypatch.setenv('LANGUAGE_CODE', 'en-GB')
    assert PipelineConfig.from_env().language_code == 'en-GB'


def test_invalid_number():
    with pytest.raises(ValueError):
        PipelineConfig.from_env({'SETTLE_DELAY': 'soon'})
