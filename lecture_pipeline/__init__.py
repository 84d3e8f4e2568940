"""
Core package for the lecture file pipeline.

This package contains the components used by the HTTP entrypoint in
:mod:`portal.main` to validate uploaded lecture files, store them in a blob
store, probe media durations, transcribe lecture audio and persist file
records.
"""
