"""
This package contains the domain models of HEVC Queue.

Modules:
    exceptions.py: The error taxonomy. Stage failures, external-process
                   failures and invalid queue control calls each have their
                   own family so callers can react to a precise cause.
    media.py: `MediaMetadata` and `StreamInfo`, thin wrappers over ffprobe's
              JSON output, plus duration and timemark parsing helpers.
    models.py: Value objects shared by the pipeline: the resolved
               `JobOptions`, progress records, crop samples, loudness
               measurements and the classified stream lists.
"""
